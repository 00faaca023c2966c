from __future__ import annotations
import base64, io, json, zipfile
from typing import Any, Dict

MANIFEST_SCHEMA = "https://developer.microsoft.com/json-schemas/teams/v1.16/MicrosoftTeams.schema.json"

# 1x1 transparent PNG used for both icons
_PLACEHOLDER_PNG = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNk+M9QDwADhgGAWjR9awAAAABJRU5ErkJggg=="
)

def build_manifest(client_id: str, bot_name: str) -> Dict[str, Any]:
    return {
        "$schema": MANIFEST_SCHEMA,
        "manifestVersion": "1.16",
        "version": "1.0.0",
        "id": client_id,
        "packageName": "com.example.bot",
        "developer": {
            "name": "Developer",
            "websiteUrl": "https://www.example.com",
            "privacyUrl": "https://www.example.com/privacy",
            "termsOfUseUrl": "https://www.example.com/terms",
        },
        "name": {"short": bot_name[:30], "full": bot_name},
        "description": {"short": bot_name[:80], "full": bot_name},
        "icons": {"color": "color.png", "outline": "outline.png"},
        "accentColor": "#FFFFFF",
        "bots": [{
            "botId": client_id,
            "scopes": ["personal", "team", "groupchat"],
            "supportsFiles": False,
            "isNotificationOnly": False,
        }],
        "permissions": ["identity", "messageTeamMembers"],
        "validDomains": [],
    }

def build_package(manifest: Dict[str, Any]) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
        zf.writestr("manifest.json", json.dumps(manifest, indent=2))
        zf.writestr("color.png", _PLACEHOLDER_PNG)
        zf.writestr("outline.png", _PLACEHOLDER_PNG)
    return buf.getvalue()
