# emma/utils/llm_utils.py
import tiktoken


def count_tokens(text: str, model: str = "gpt-4o") -> int:
    try:
        encoding = tiktoken.encoding_for_model(model)
        return len(encoding.encode(text))
    except KeyError:
        return len(text) // 4  # Fallback


def estimate_cost_usd(tokens: int, model: str = "gpt-4o") -> float:
    # input token price, USD per 1M tokens
    price_per_million = 5.00 if model == "gpt-4o" else 0.50
    return (tokens / 1_000_000) * price_per_million
