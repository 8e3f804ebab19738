"""Shared constants used by the pep_screening screening client."""

VERSION = "0.1.0"
USER_AGENT = f"pep-screening/{VERSION}"
DEFAULT_BASE_URL = "https://api.dilisense.com"
DEFAULT_TIMEOUT_SECONDS = 30.0
INDIVIDUAL_ENDPOINT = "/v1/checkIndividual"
ENTITY_ENDPOINT = "/v1/checkEntity"
API_KEY_HEADER = "x-api-key"
BREAKER_NAME = "dilisense_api"
BOTH_QUERIES_MESSAGE = "Cannot use both search_all and names parameters"
MISSING_QUERY_MESSAGE = "Either search_all or names parameter is required"
