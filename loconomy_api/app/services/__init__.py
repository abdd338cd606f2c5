"""
Service layer.

Every service is a class of async classmethods encapsulating the
business rules of one domain.  Endpoints stay thin: they resolve the
caller, call the service and translate domain errors to HTTP codes.
"""
