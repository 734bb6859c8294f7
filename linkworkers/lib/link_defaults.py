"""Process-wide defaults for link extraction."""

# Links returned per message when the caller does not pass max_links.
DEFAULT_MAX_LINKS = 3
