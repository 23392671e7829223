"""
Core client components: settings, the configuration holder, the request
executor and its direct HTTP transport.
"""
