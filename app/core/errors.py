"""
Taxonomía de errores del pipeline de mensajes.

Solo MalformedEvent y NoTicket son fatales para un evento; el resto
termina en un estado de auditoría y el pipeline retorna normalmente.
`code` es el prefijo con el que cada condición aparece en los
motivos y estados auditados.
"""


class PipelineError(RuntimeError):
    """Error base del pipeline."""

    code = "pipeline_error"
    retryable = False

    def describe(self) -> str:
        return f"{self.code}: {self}"


class MalformedEvent(PipelineError):
    """Payload del gateway que no se puede interpretar. Se descarta sin reintento."""

    code = "malformed"


class StorageError(PipelineError):
    """Fallo del almacenamiento durable."""

    code = "storage_error"
    retryable = True


class NoTicket(StorageError):
    """No fue posible obtener ni crear el ticket (almacenamiento no disponible)."""

    code = "no_ticket"


class NoEligibleAgent(PipelineError):
    """Ningún agente elegible. Resultado esperado: se audita como `skipped`."""

    code = "no_eligible_agent"


class ModelError(PipelineError):
    """El servicio de modelo de lenguaje falló."""

    code = "model_error"


class ModelTimeout(ModelError):
    """El servicio de modelo de lenguaje excedió el tiempo límite."""

    code = "model_timeout"


class LowConfidence(PipelineError):
    """Respuesta con confianza insuficiente. Resultado esperado: se audita como `low_confidence`."""

    code = "low_confidence"


class DispatchFailure(PipelineError):
    """El envío al gateway falló después de una generación exitosa."""

    code = "dispatch_failure"
