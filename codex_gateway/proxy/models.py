"""Model name translation: OpenAI-style names -> upstream Codex names."""

DEFAULT_UPSTREAM_MODEL = "codex-gpt-4.1"

DEFAULT_MODEL_MAP = {
    "gpt-4.1": "codex-gpt-4.1",
    "gpt-4o": "codex-gpt-4o",
    "gpt-5": "codex-gpt-5",
}


class ModelMapper:
    """Case-insensitive lookup with pass-through for unknown names.

    Unknown names are forwarded as-is so newer upstream models are never
    blocked by a stale table.
    """

    def __init__(
        self,
        table: dict[str, str] | None = None,
        default_model: str = DEFAULT_UPSTREAM_MODEL,
    ):
        table = DEFAULT_MODEL_MAP if table is None else table
        self._external = list(table)
        self._table = {name.lower(): upstream for name, upstream in table.items()}
        self._default_model = default_model

    @property
    def default_model(self) -> str:
        return self._default_model

    def map(self, name: str | None) -> str:
        if not name or not name.strip():
            return self._default_model
        return self._table.get(name.lower(), name)

    def external_names(self) -> list[str]:
        """Names advertised on /v1/models."""
        return list(self._external)
