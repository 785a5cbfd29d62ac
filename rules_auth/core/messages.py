"""User-facing messages for the auth service.

Every message is available in Japanese (the default market) and English.
"""

Message = dict[str, str]

SUPPORTED_LOCALES = ("ja", "en")
DEFAULT_LOCALE = "ja"


class ErrorMessages:
    """Error messages for auth procedures."""

    # Tokens and credentials
    INVALID_TOKEN = {
        "ja": "無効または期限切れのトークンです",
        "en": "Invalid or expired token",
    }
    TOKEN_EXPIRED = {
        "ja": "トークンの有効期限が切れています",
        "en": "Token has expired",
    }
    USER_NOT_FOUND = {
        "ja": "ユーザーが見つかりません",
        "en": "User not found",
    }
    AUTH_REQUIRED = {
        "ja": "認証が必要です",
        "en": "Authentication required",
    }
    EMAIL_VERIFICATION_REQUIRED = {
        "ja": "メールアドレスの確認が必要です",
        "en": "Email verification required",
    }
    ADMIN_REQUIRED = {
        "ja": "管理者権限が必要です",
        "en": "Administrator role required",
    }
    INSUFFICIENT_SCOPE = {
        "ja": "APIキーの権限が不足しています: {scope}",
        "en": "Insufficient API key scope: {scope}",
    }

    # Registration
    USERNAME_IN_USE = {
        "ja": "このユーザー名は既に使用されています",
        "en": "Username already in use",
    }
    EMAIL_IN_USE = {
        "ja": "このメールアドレスは既に使用されています",
        "en": "Email already in use",
    }
    OAUTH_ACCOUNT_IN_USE = {
        "ja": "この{provider}アカウントは既に別のユーザーにリンクされています",
        "en": "This {provider} account is already linked to another user",
    }
    ACCOUNT_NOT_REGISTERED = {
        "ja": "このアカウントは登録されていません。新規登録画面から登録してください。",
        "en": "This account is not registered. Please sign up first.",
    }
    REGISTRATION_FAILED = {
        "ja": "登録の完了に失敗しました",
        "en": "Failed to complete registration",
    }

    # OAuth flow
    INVALID_STATE = {
        "ja": "無効または期限切れの状態です",
        "en": "Invalid or expired state",
    }
    MISSING_PARAMS = {
        "ja": "認証パラメータが不足しています",
        "en": "Missing authorization parameters",
    }
    INVALID_CODE = {
        "ja": "無効な認可コードです",
        "en": "Invalid authorization code",
    }
    UNSUPPORTED_PROVIDER = {
        "ja": "サポートされていないプロバイダーです: {provider}",
        "en": "Unsupported provider: {provider}",
    }
    PROVIDER_NOT_CONFIGURED = {
        "ja": "{provider} OAuthが設定されていません",
        "en": "{provider} OAuth is not configured",
    }
    RATE_LIMIT_EXCEEDED = {
        "ja": "リクエストが多すぎます。{seconds}秒後にもう一度お試しください。",
        "en": "Rate limit exceeded. Please try again in {seconds} seconds.",
    }
    TOO_MANY_OAUTH_ATTEMPTS = {
        "ja": "OAuth認証の試行回数が多すぎます。しばらく待ってから再度お試しください。",
        "en": "Too many OAuth authentication attempts. Please try again later.",
    }
    OAUTH_NO_EMAIL = {
        "ja": "{provider}アカウントに確認済みのメールアドレスが見つかりません",
        "en": "No verified email address found in {provider} account",
    }
    OAUTH_PROVIDER_FAILED = {
        "ja": "{provider}認証に失敗しました",
        "en": "{provider} authentication failed",
    }

    # Provider-reported OAuth error categories
    OAUTH_ACCESS_DENIED = {
        "ja": "認証がキャンセルされました",
        "en": "Authorization was denied",
    }
    OAUTH_INVALID_REQUEST = {
        "ja": "認証リクエストが不正です",
        "en": "The authorization request was invalid",
    }
    OAUTH_UNAUTHORIZED_CLIENT = {
        "ja": "このクライアントは認証を許可されていません",
        "en": "The client is not authorized for this request",
    }
    OAUTH_UNSUPPORTED_RESPONSE_TYPE = {
        "ja": "サポートされていないレスポンスタイプです",
        "en": "Unsupported response type",
    }
    OAUTH_INVALID_SCOPE = {
        "ja": "要求されたスコープが無効です",
        "en": "The requested scope is invalid",
    }
    OAUTH_SERVER_ERROR = {
        "ja": "認証サーバーでエラーが発生しました",
        "en": "The authorization server encountered an error",
    }
    OAUTH_TEMPORARILY_UNAVAILABLE = {
        "ja": "認証サーバーが一時的に利用できません",
        "en": "The authorization server is temporarily unavailable",
    }
    OAUTH_AUTH_FAILED = {
        "ja": "OAuth認証に失敗しました",
        "en": "OAuth authentication failed",
    }

    # Device flow
    INVALID_DEVICE_CODE = {
        "ja": "無効なデバイスコードです",
        "en": "Invalid device code",
    }
    DEVICE_CODE_EXPIRED = {
        "ja": "デバイスコードの有効期限が切れています。最初からやり直してください。",
        "en": "Device code has expired. Please start over.",
    }
    DEVICE_TOO_MANY_ATTEMPTS = {
        "ja": "ポーリング回数の上限に達しました。最初からやり直してください。",
        "en": "Too many polling attempts. Please restart the device flow.",
    }
    DEVICE_SLOW_DOWN = {
        "ja": "ポーリング間隔が短すぎます。{interval}秒以上空けてください。",
        "en": "Polling too fast. Wait at least {interval} seconds between requests.",
    }
    DEVICE_INIT_FAILED = {
        "ja": "デバイス認証の開始に失敗しました",
        "en": "Failed to start device authorization",
    }

    # Generic
    INVALID_INPUT = {
        "ja": "入力内容が不正です",
        "en": "Invalid input",
    }
    INTERNAL_ERROR = {
        "ja": "内部サーバーエラーが発生しました",
        "en": "Internal server error",
    }


class DeviceFlowMessages:
    """Descriptions attached to non-error device-flow poll results."""

    AUTHORIZATION_PENDING = {
        "ja": "ユーザーの承認を待っています",
        "en": "Waiting for the user to authorize the device",
    }
    SLOW_DOWN = {
        "ja": "ポーリング間隔を{interval}秒に延ばしてください",
        "en": "Increase the polling interval to {interval} seconds",
    }
    ACCESS_DENIED = {
        "ja": "ユーザーが認証を拒否しました",
        "en": "The user denied the authorization request",
    }
    EXPIRED_TOKEN = {
        "ja": "デバイスコードの有効期限が切れています",
        "en": "The device code has expired",
    }


class SuccessMessages:
    """Success messages for auth operations."""

    LOGGED_OUT = {
        "ja": "ログアウトしました",
        "en": "Successfully logged out",
    }


OAUTH_ERROR_MESSAGES: dict[str, Message] = {
    "access_denied": ErrorMessages.OAUTH_ACCESS_DENIED,
    "invalid_request": ErrorMessages.OAUTH_INVALID_REQUEST,
    "unauthorized_client": ErrorMessages.OAUTH_UNAUTHORIZED_CLIENT,
    "unsupported_response_type": ErrorMessages.OAUTH_UNSUPPORTED_RESPONSE_TYPE,
    "invalid_scope": ErrorMessages.OAUTH_INVALID_SCOPE,
    "server_error": ErrorMessages.OAUTH_SERVER_ERROR,
    "temporarily_unavailable": ErrorMessages.OAUTH_TEMPORARILY_UNAVAILABLE,
}


def normalize_locale(locale: str | None, default: str = DEFAULT_LOCALE) -> str:
    """Map an arbitrary locale tag to a supported one."""
    if locale:
        tag = locale.strip().lower()
        for supported in SUPPORTED_LOCALES:
            if tag.startswith(supported):
                return supported
    return default if default in SUPPORTED_LOCALES else DEFAULT_LOCALE


def detect_locale(accept_language: str | None, default: str = DEFAULT_LOCALE) -> str:
    """Pick a locale from an ``Accept-Language`` header.

    Example header: ``ja-JP,ja;q=0.9,en-US;q=0.8,en;q=0.7``. Languages are
    tried by descending quality; the first supported one wins.
    """
    if not accept_language:
        return normalize_locale(None, default)

    candidates: list[tuple[float, str]] = []
    for part in accept_language.split(","):
        tag, _, q_value = part.strip().partition(";q=")
        try:
            quality = float(q_value) if q_value else 1.0
        except ValueError:
            quality = 0.0
        candidates.append((quality, tag.lower()))

    # sorted() is stable, so equal qualities keep header order
    for _, tag in sorted(candidates, key=lambda item: -item[0]):
        for supported in SUPPORTED_LOCALES:
            if tag.startswith(supported):
                return supported

    return normalize_locale(None, default)


def translate(message: Message, locale: str, **params: object) -> str:
    """Render ``message`` for ``locale``, falling back to the default locale."""
    template = message.get(locale) or message[DEFAULT_LOCALE]
    if params:
        return template.format(**params)
    return template


def oauth_error_message(error: str, locale: str) -> str:
    """Human-readable message for a provider-reported OAuth error code.

    Unknown codes never pass through raw; they collapse to the generic
    "authentication failed" category.
    """
    message = OAUTH_ERROR_MESSAGES.get(error)
    if message is None:
        return translate(ErrorMessages.OAUTH_AUTH_FAILED, locale)
    return translate(message, locale)
