"""
                        Services Module

Order handling services and the external collaborators they depend on.
Each collaborator has a Mock (development) and a Real (production)
implementation selected by ENV_MODE.

Services:
    - extraction / classifier: keyword rules over chat and restaurant text
    - conversation: chat replies and client-proxy replies
    - discovery: restaurant search with a WhatsApp contact
    - dispatcher / fanout: outbound WhatsApp messages
    - orchestrator: session and order state machines

Collaborators:
    - llm: text generation (OpenAI)
    - search: web search, results scraping, page fetch
    - messaging: WhatsApp over the Evolution API
"""
