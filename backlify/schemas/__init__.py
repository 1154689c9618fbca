# backlify/schemas — pydantic DTOs of the HTTP API (no business logic).
