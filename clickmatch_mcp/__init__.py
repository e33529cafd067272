"""
clickmatch MCP Server - attribution tools over the Model Context Protocol.

Exposes:
- match_purchase / bulk_match_purchases
- enhance_conversions
- normalize_identifiers

Usage:
    # Via CLI
    clickmatch-mcp

    # Via Python
    from clickmatch_mcp import server
    server.main()
"""

__version__ = "0.1.0"
