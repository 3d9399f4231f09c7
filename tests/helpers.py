"""Constants and small helpers shared by the test modules."""

from unittest.mock import MagicMock

HMAC_SECRET = "test-hmac-secret"
AUTH_TOKEN = "service-secret"
ADMIN_TOKEN = "admin-secret"
WEBHOOK_SECRET = "whsec_test_secret"
GHOST_KEY_ID = "64f1c0ffee0123456789abcd"
GHOST_KEY_SECRET = "a1b2c3d4" * 8
BASE_URL = "http://shop.example.com"

STORE = {
    "/courses/python": {
        "id": "prod_course",
        "name": "Python course",
        "cdn": {
            "redirect": "https://courses.example.com/python",
            "expiry": {"amount": 1, "unit": "year"},
        },
    },
    "/books/novel": {
        "id": "prod_book",
        "name": "The Novel",
        "files": {"novel.pdf": "novel-v2.pdf", "novel.epub": "novel-v2.epub"},
    },
    "/events/talk": {
        "id": "prod_talk",
        "name": "Members talk",
        "links": ["https://meet.example.com/talk"],
        "eventOn": "2024-03-01T19:00:00",
        "members": True,
    },
    "/empty": {"name": "Nothing inside"},
}

POLLS = {
    "newsletter": {"type": "email", "unique": True},
    "feedback": {"type": "text"},
}


def sent_messages(ses_client: MagicMock) -> list[dict]:
    """The ``send_email`` keyword arguments of every message sent so far."""
    return [call.kwargs for call in ses_client.send_email.call_args_list]


def message_text(message: dict) -> str:
    return str(message["Message"]["Body"]["Text"]["Data"])


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
