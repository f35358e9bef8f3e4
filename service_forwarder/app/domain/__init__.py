"""
Forwarder domain logic: the forwarding state machine and the response
sanitizer that prepares upstream bodies for browser clients.
"""
