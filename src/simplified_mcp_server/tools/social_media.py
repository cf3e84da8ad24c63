"""Social media account and post tools."""

import json
import logging
from typing import Any, Dict

from ..errors import AppError, ErrorType
from ..models import ToolDefinition, text_response

logger = logging.getLogger(__name__)

ACCOUNTS_ENDPOINT = "/api/v1/service/social-media/get-accounts"
CREATE_POST_ENDPOINT = "/api/v1/service/social-media/create"

NETWORKS = [
    "facebook",
    "instagram",
    "twitter",
    "linkedin",
    "tiktok",
    "youtube",
    "pinterest",
    "threads",
    "google",
    "bluesky",
    "tiktokBusiness",
]

ACTION_MESSAGES = {
    "schedule": "scheduled",
    "add_to_queue": "added to queue",
    "draft": "saved as draft",
}

URL_PATTERN = "^https?://.+"


def _value_enum(*values: str) -> Dict[str, Any]:
    return {
        "type": "object",
        "properties": {"value": {"type": "string", "enum": list(values)}},
    }


PRIVACY_STATUSES = [
    "PUBLIC_TO_EVERYONE",
    "MUTUAL_FOLLOW_FRIEND",
    "FOLLOWER_OF_CREATOR",
    "SELF_ONLY",
]

# Platform-specific settings accepted under ``additional``
ADDITIONAL_PROPERTIES: Dict[str, Any] = {
    "google": {
        "type": "object",
        "properties": {
            "post": {
                "type": "object",
                "properties": {
                    "title": {"type": "string", "maxLength": 300},
                    "topicType": {
                        "type": "string",
                        "enum": ["STANDARD", "EVENT", "OFFER", "PRODUCT"],
                    },
                    "couponCode": {"type": "string", "maxLength": 50},
                    "callToActionUrl": {"type": "string", "pattern": URL_PATTERN},
                    "redeemOnlineUrl": {"type": "string", "pattern": URL_PATTERN},
                    "termsConditions": {"type": "string", "maxLength": 1000},
                    "callToActionType": {
                        "type": "string",
                        "enum": [
                            "SIGN_UP",
                            "LEARN_MORE",
                            "BOOK",
                            "ORDER",
                            "SHOP",
                            "CALL",
                            "GET_OFFER",
                        ],
                    },
                },
            }
        },
    },
    "tiktok": {
        "type": "object",
        "properties": {
            "post": {
                "type": "object",
                "properties": {
                    "brandContent": {"type": "boolean"},
                    "brandOrganic": {"type": "boolean"},
                    "duetDisabled": {"type": "boolean"},
                    "privacyStatus": {"type": "string", "enum": PRIVACY_STATUSES},
                    "stitchDisabled": {"type": "boolean"},
                    "commentDisabled": {"type": "boolean"},
                },
            },
            "channel": _value_enum("direct", "business"),
            "postType": _value_enum("video", "image"),
        },
    },
    "threads": {"type": "object", "properties": {"channel": _value_enum("direct")}},
    "youtube": {
        "type": "object",
        "properties": {
            "post": {
                "type": "object",
                "properties": {
                    "title": {"type": "string", "maxLength": 100},
                    "license": {"type": "string", "enum": ["standard", "creativeCommon"]},
                    "privacyStatus": {
                        "type": "string",
                        "enum": ["public", "private", "unlisted"],
                    },
                    "selfDeclaredMadeForKids": {"type": "string", "enum": ["yes", "no"]},
                },
            },
            "postType": _value_enum("short", "video"),
        },
    },
    "facebook": {
        "type": "object",
        "properties": {"postType": _value_enum("story", "feed", "reel")},
    },
    "linkedin": {
        "type": "object",
        "properties": {
            "audience": _value_enum("PUBLIC", "CONNECTIONS", "LOGGED_IN_MEMBERS")
        },
    },
    "instagram": {
        "type": "object",
        "properties": {
            "postReel": {
                "type": "object",
                "properties": {
                    "audioName": {"type": "string", "maxLength": 100},
                    "shareToFeed": {"type": "boolean"},
                },
            },
            "postType": _value_enum("post", "reel", "story"),
        },
    },
    "pinterest": {
        "type": "object",
        "properties": {
            "post": {
                "type": "object",
                "properties": {
                    "link": {"type": "string", "pattern": URL_PATTERN},
                    "title": {"type": "string", "maxLength": 100},
                    "imageAlt": {"type": "string", "maxLength": 500},
                },
            }
        },
    },
}


def _require_client(api_client: Any) -> None:
    if api_client is None:
        raise AppError(
            ErrorType.TOOL_ERROR,
            "API client not available - server configuration error",
        )


async def get_social_media_accounts(
    params: Dict[str, Any], api_client: Any
) -> Dict[str, Any]:
    _require_client(api_client)
    network = params.get("network")
    try:
        response = await api_client.get(
            ACCOUNTS_ENDPOINT, params={"network": network} if network else None
        )
    except AppError as e:
        logger.warning(f"Failed to retrieve social media accounts: {e}")
        return text_response(
            json.dumps(
                {
                    "success": False,
                    "error": f"Failed to retrieve social media accounts: {e.message}",
                },
                indent=2,
            ),
            is_error=True,
        )

    data = response.data
    accounts = data.get("accounts", data) if isinstance(data, dict) else data
    if isinstance(data, dict) and "total" in data:
        total = data["total"]
    elif isinstance(data, list):
        total = len(data)
    elif isinstance(accounts, list):
        total = len(accounts)
    else:
        total = 1

    return text_response(
        json.dumps(
            {
                "success": True,
                "accounts": accounts,
                "total": total,
                "filters": {"network": network or "all"},
            },
            indent=2,
        )
    )


async def create_social_media_post(
    params: Dict[str, Any], api_client: Any
) -> Dict[str, Any]:
    _require_client(api_client)
    action = params["action"]
    scheduled_date = params.get("date")
    payload = {
        "action": action,
        "message": params["message"].strip(),
        "account_ids": [params["accountId"]],
        "date": scheduled_date,
        "media": params.get("media") or [],
        "additional": params.get("additional") or {},
    }

    try:
        response = await api_client.post(CREATE_POST_ENDPOINT, payload)
    except AppError as e:
        logger.warning(f"Failed to create social media post: {e}")
        return text_response(
            json.dumps(
                {"success": False, "error": f"Failed to create social media post: {e.message}"},
                indent=2,
            ),
            is_error=True,
        )

    action_type = ACTION_MESSAGES.get(action, "processed")
    return text_response(
        json.dumps(
            {
                "success": True,
                "message": f"Social media post {action_type} successfully",
                "post": response.data,
                "action": action,
                "accountId": params["accountId"],
                "scheduledDate": scheduled_date,
            },
            indent=2,
        )
    )


def get_social_media_accounts_tool() -> ToolDefinition:
    return ToolDefinition(
        name="get_social_media_accounts",
        description="Retrieve all connected social media accounts",
        category="social-media",
        version="1.0.0",
        input_schema={
            "type": "object",
            "properties": {
                "network": {
                    "type": "string",
                    "description": "Filter by specific social media platform",
                    "enum": NETWORKS,
                }
            },
        },
        handler=get_social_media_accounts,
    )


def create_social_media_post_tool() -> ToolDefinition:
    return ToolDefinition(
        name="create_social_media_post",
        description=(
            "Create a new social media post with platform-specific settings for "
            "Google, TikTok, Threads, YouTube, Facebook, LinkedIn, Instagram, "
            "and Pinterest"
        ),
        category="social-media",
        version="1.1.0",
        input_schema={
            "type": "object",
            "properties": {
                "message": {
                    "type": "string",
                    "description": "Post message/content",
                    "minLength": 1,
                    "maxLength": 5000,
                },
                "accountId": {
                    "type": "string",
                    "description": "Social media account ID",
                    "minLength": 1,
                    "maxLength": 100,
                },
                "action": {
                    "type": "string",
                    "description": "Action to perform with the post",
                    "enum": list(ACTION_MESSAGES),
                },
                "date": {
                    "type": "string",
                    "description": "Scheduled date for the post (format: YYYY-MM-DD HH:MM)",
                    "pattern": r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}$",
                },
                "media": {
                    "type": "array",
                    "description": "Media file URLs to attach to the post",
                    "items": {"type": "string", "pattern": URL_PATTERN},
                    "maxItems": 10,
                },
                "additional": {
                    "type": "object",
                    "description": "Platform-specific post settings and metadata",
                    "properties": ADDITIONAL_PROPERTIES,
                },
            },
            "required": ["message", "accountId", "action"],
        },
        handler=create_social_media_post,
    )
