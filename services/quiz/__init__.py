"""Quiz engine service: answer normalization, scoring, attempt sessions and review."""

__all__ = [
    "app", "bank", "clock", "errors", "metrics", "models", "normalizer",
    "repo", "review", "rewards", "scorer", "service", "session",
]
