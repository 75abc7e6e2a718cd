# SPDX-License-Identifier: Apache-2.0
"""
Barangay Portal: browser-facing gateway for the resident and staff portals.

Serves the portal views and forwards the browser's API traffic to the
backend origin. Underneath, it:
1. Forwards every /api/* request verbatim to the configured backend
2. Checks the backend session on every protected view and redirects by role
3. Streams feedback exports and budget document uploads outside the JSON path
"""

__version__ = "0.1.0"
