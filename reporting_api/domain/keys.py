"""Key layout for the shared key-value store."""
from reporting_api.domain.models import SubjectKey


# Credential Keys
def agency_key(agency_id: str) -> str:
    return f"agency:{agency_id}"


def api_key_lookup_key(api_key_hash: str) -> str:
    """Reverse index entry: key hash -> agency id."""
    return f"agency_api_key:{api_key_hash}"


def agency_clients_key(agency_id: str) -> str:
    return f"agency:{agency_id}:clients"


# Client Keys
def client_key(client_id: str) -> str:
    return f"client:{client_id}"


def integration_key(client_id: str) -> str:
    return f"client:{client_id}:integration"


# Idempotency Keys
def idempotency_key(subject: SubjectKey, token: str) -> str:
    return f"idempotency:{subject.client_id}:{subject.action_class.value}:{token}"


# Rate Limit Keys
def rate_limit_key(subject: SubjectKey) -> str:
    """Generate rate limit window key."""
    return f"rl:{subject.action_class.value}:{subject.client_id}"


# Object Keys
def report_object_key(agency_id: str, client_id: str, filename: str) -> str:
    return f"reports/{agency_id}/{client_id}/{filename}"


def csv_object_key(agency_id: str, client_id: str, stamp: str) -> str:
    return f"ga4-csv/{agency_id}/{client_id}/{stamp}.csv"
