DEFAULT_EVENT_TOPIC = "flow-events"
DEFAULT_GRAPH_API_BASE_URL = "https://graph.facebook.com"
DEFAULT_GRAPH_API_VERSION = "v21.0"
DEFAULT_MAX_STEPS = 500
DEFAULT_MAX_DELAY_SECONDS = 300.0
DEFAULT_WAITING_TTL_HOURS = 72.0
DEFAULT_BUTTON_PROMPT = "Choose an option:"
DEFAULT_TEXT_MESSAGE = "Hello!"
DEFAULT_CHOICE_TITLE = "Continue"
DEFAULT_QUICK_REPLY_TITLE = "Quick Reply"
MAX_ATTACHED_BUTTONS = 3
MAX_QUICK_REPLIES = 13
DEFAULT_MAX_DELIVERY_ATTEMPTS = 3
DEAD_LETTER_SUFFIX = ":dead"
DEFAULT_WORKER_CONCURRENCY = 10
DEFAULT_RESULT_HISTORY = 100
