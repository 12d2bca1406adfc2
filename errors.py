"""Error types shared by the store, the reporting core and the pages."""


class PaeError(Exception):
    """Base class for every failure shown to the user as a single message."""

    user_message = "Ocurrió un error inesperado."

    def __init__(self, message=None):
        super().__init__(message or self.user_message)
        self.message = message or self.user_message


class FetchFailed(PaeError):
    user_message = "No se pudieron consultar los datos."


class WriteFailed(PaeError):
    user_message = "No se pudieron guardar los datos."


class AggregationFailed(PaeError):
    user_message = "No se pudo generar el reporte. Intente nuevamente."


class ValidationFailed(PaeError):
    user_message = "Los datos proporcionados no son válidos."


class ReportInProgress(PaeError):
    user_message = "El reporte ya se está generando. Espere un momento."
