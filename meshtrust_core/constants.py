# Protocol and persistence constants.

CHALLENGE_DOMAIN = "meshtrust/challenge/v1"
NONCE_SIZE = 32
PUBLIC_KEY_SIZE = 32
SIGNATURE_SIZE = 64
MAX_SEQUENCE = 2 ** 64 - 1

# Frame types on the wire
FRAME_CHALLENGE = "auth_challenge"
FRAME_RESPONSE = "auth_response"
FRAME_RESULT = "auth_result"

IDENTITY_SCHEMA_VERSION = "1.0"
TRUST_SCHEMA_VERSION = 1

# Policy defaults (seconds)
DEFAULT_MAX_CHALLENGE_AGE = 30.0
DEFAULT_LATENCY_SLACK = 5.0
DEFAULT_MAX_FAILURES = 5
DEFAULT_FAILURE_WINDOW = 60.0
DEFAULT_FAILURE_COOLDOWN = 300.0

DEFAULT_DB_PATH = "db/trust_state.db"
DEFAULT_IDENTITY_PATH = "db/identity.json"
DEFAULT_VPN_NETWORK = "10.66.0.0/24"
