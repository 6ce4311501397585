"""Order lifecycle: enums, transition table, persistence and orchestration."""
