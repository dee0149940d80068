from assistant.config import Settings
from assistant.services.messaging.base import IncomingMessage, MessagingProvider
from assistant.services.messaging.sms import SMSProvider
from assistant.services.messaging.telegram import TelegramProvider
from assistant.services.messaging.whatsapp import WhatsAppProvider


def build_messaging_providers(settings: Settings) -> dict[str, MessagingProvider]:
    """One provider per platform. Webhooks parse even when sending is unconfigured."""
    providers = [
        TelegramProvider(settings.telegram_bot_token),
        WhatsAppProvider(settings.whatsapp_access_token, settings.whatsapp_phone_number_id),
        SMSProvider(settings.twilio_account_sid, settings.twilio_auth_token, settings.twilio_phone_number),
    ]
    return {provider.name: provider for provider in providers}


__all__ = [
    "IncomingMessage",
    "MessagingProvider",
    "TelegramProvider",
    "WhatsAppProvider",
    "SMSProvider",
    "build_messaging_providers",
]
