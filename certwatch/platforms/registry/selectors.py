"""Registry DOM selector constants with fallbacks.

Most specific first. Each constant is a tuple so callers iterate until a
match is found.
"""

# --- Result rows (fetch-certificates payload) ---
ROW_SELECTORS: tuple[str, ...] = (
    "#death-table tbody tr",
    "table tbody tr",
    ".table tbody tr",
    "tbody tr",
    "tr",
)

# --- Row layout ---
MIN_COLUMNS: int = 6
NAME_COLUMN: int = 1
GENDER_COLUMN: int = 2
DATE_COLUMN: int = 3
FATHER_COLUMN: int = 4
MOTHER_COLUMN: int = 5

# --- Anti-forgery token (landing page) ---
TOKEN_META_SELECTOR: str = 'meta[name="csrf-token"]'
TOKEN_INPUT_SELECTOR: str = 'input[name="_token"]'
TOKEN_NAME_HINTS: tuple[str, ...] = ("csrf", "token")
TOKEN_COOKIE_NAMES: tuple[str, ...] = ("XSRF-TOKEN", "xsrf-token", "csrf-token")

# --- Verification code (landing page) ---
CAPTCHA_SELECTORS: tuple[str, ...] = (
    ".captcha-number",
    "span.input-group-text.captcha-number",
)
CAPTCHA_INPUT_SELECTOR: str = 'input[name="verification_number"]'
CAPTCHA_GROUP_CLASS: str = "input-group"
CAPTCHA_ADDON_SELECTOR: str = ".input-group-text"
