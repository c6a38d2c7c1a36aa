from dataclasses import dataclass, field

@dataclass
class ServiceResult:
    """HTTP-shaped outcome of a service call; the API layer returns it as is."""
    status_code: int
    body: dict = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status_code < 400
