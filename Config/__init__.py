from .Settings import DEFAULT_GROQ_API_URL, DEFAULT_GROQ_MODEL, Settings
