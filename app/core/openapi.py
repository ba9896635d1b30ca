"""
OpenAPI schema customizations for drf-spectacular.

This module provides hooks to customize the generated OpenAPI schema,
including summaries for third-party endpoints and tag groupings for better
documentation organization in ReDoc/Swagger UI.

Tag naming follows the pattern: [App Name] - [Group Name]
Examples:
- Auth (register, login, tokens)
- Auth - User (current user, user search)
- Chat - Chats (list, direct access)
- Chat - Groups (governance)
- Chat - Messages (history, send, search, pins)
- Chat - Receipts (delivered, read)
- Chat - Reactions
"""

# Natural language summaries for simplejwt endpoints
# Maps operation_id to (summary, description)
JWT_SUMMARIES = {
    "auth_login_create": (
        "Log in",
        "Authenticate with email and password to receive JWT tokens.",
    ),
    "auth_token_refresh_create": (
        "Refresh access token",
        "Get a new access token using a valid refresh token.",
    ),
}

TAG_DESCRIPTIONS = [
    {
        "name": "Auth",
        "description": "Registration, login and token refresh.",
    },
    {
        "name": "Auth - User",
        "description": "Current user retrieval, updates and user search.",
    },
    {
        "name": "Chat - Chats",
        "description": "Chats of the current user and direct chat access.",
    },
    {
        "name": "Chat - Groups",
        "description": "Group creation and governance: members, admins, muting, ownership.",
    },
    {
        "name": "Chat - Messages",
        "description": "Message history, sending, search and pinning.",
    },
    {
        "name": "Chat - Receipts",
        "description": "Per-recipient delivery and read tracking.",
    },
    {
        "name": "Chat - Reactions",
        "description": "One emoji reaction per user per message.",
    },
]


def group_endpoints(result, generator, request, public):
    """
    Postprocessing hook to group API endpoints by function.

    Chat endpoints set their tags with tags= in @extend_schema; this hook
    tags the auth endpoints, adds summaries to the simplejwt views and
    attaches tag descriptions.
    """
    paths = result.get("paths", {})

    for path, methods in paths.items():
        for method, operation in methods.items():
            if not isinstance(operation, dict):
                continue

            operation_id = operation.get("operationId", "")

            if operation_id in JWT_SUMMARIES:
                summary, description = JWT_SUMMARIES[operation_id]
                operation["summary"] = summary
                operation["description"] = description

            if operation_id.startswith(("auth_me_", "auth_users_")):
                operation["tags"] = ["Auth - User"]
            elif operation_id.startswith("auth_"):
                operation["tags"] = ["Auth"]

    result["tags"] = TAG_DESCRIPTIONS
    return result
