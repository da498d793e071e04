# notification_relay/errors.py


class ValidationError(ValueError):
    """El input del cliente no cumple el contrato de un campo."""


class StoreFailure(RuntimeError):
    """
    La tabla de notificaciones no pudo completar la operación.
    Lleva el nombre de la operación para que los logs y la API
    sepan qué falló.
    """

    def __init__(self, operation: str, detail: str = ""):
        self.operation = operation
        self.detail = detail
        message = f"{operation} failed"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
