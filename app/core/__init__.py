"""
Core Application - Infrastructure & Base Classes

Generic building blocks with no payment or booking logic:

Models (import from core.models / core.model_mixins):
    - BaseModel: Abstract model with timestamps (created_at, updated_at)
    - UUIDPrimaryKeyMixin: UUID as primary key

Services (import from core.services):
    - BaseService: Logger and transaction helpers
    - ServiceResult: Explicit success/failure result

Exceptions (import from core.exceptions):
    - BaseApplicationError, ValidationError, NotFoundError,
      ConflictError, ExternalServiceError

Concurrency (import from core.concurrency):
    - fan_out: Run a callable over many items on a bounded thread pool
"""
