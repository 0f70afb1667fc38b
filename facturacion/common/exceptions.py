"""
Errores de dominio de facturación e inventario.

Todos heredan de HTTPException para que FastAPI los serialice directamente
con la forma {"errors": [...]}; los servicios los lanzan y los routers no
necesitan traducirlos.
"""
from typing import Iterable, List, Optional, Tuple, Type, Union
from decimal import Decimal
from fastapi import HTTPException, status


class FacturacionError(HTTPException):
    """Base de la taxonomía de errores; siempre expone una lista de mensajes."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    default_message: str = "Solicitud inválida"

    def __init__(self, errors: Union[str, Iterable[str], None] = None):
        if errors is None:
            errors = [self.default_message]
        elif isinstance(errors, str):
            errors = [errors]
        self.errors: List[str] = list(errors)
        super().__init__(status_code=type(self).status_code, detail={"errors": self.errors})


class DomainValidationError(FacturacionError):
    default_message = "Datos inválidos"


class ReferenceNotFoundError(FacturacionError):
    default_message = "La referencia especificada no existe"


class DuplicateConsecutiveError(FacturacionError):
    default_message = "El número consecutivo ya existe"


class OutOfOrderDateError(FacturacionError):
    default_message = "La fecha no respeta el orden de los consecutivos"


class ImmutableFieldError(FacturacionError):
    default_message = "El campo no puede modificarse"


class InsufficientStockError(FacturacionError):
    default_message = "Cantidad insuficiente en existencia"

    def __init__(
        self,
        errors: Union[str, Iterable[str], None] = None,
        product_id: Optional[int] = None,
        available: Optional[Decimal] = None,
        requested: Optional[Decimal] = None,
    ):
        self.product_id = product_id
        self.available = available
        self.requested = requested
        super().__init__(errors)

    @classmethod
    def for_product(cls, product, requested: Decimal, context: Optional[str] = None) -> "InsufficientStockError":
        message = (
            f"La cantidad en existencia del producto {product.name} es insuficiente: "
            f"disponible {product.on_hand_quantity}, requerido {requested}"
        )
        if context:
            message = f"{context}: {message}"
        return cls(message, product_id=product.id, available=product.on_hand_quantity, requested=requested)


class NotFoundError(FacturacionError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Recurso no encontrado"


class InternalError(FacturacionError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Error interno del servidor"


class ErrorCollector:
    """
    Acumula violaciones de validación para reportarlas todas juntas.

    Si todas las violaciones son del mismo tipo se lanza ese tipo; si se
    mezclan tipos se lanza DomainValidationError con la lista completa.
    """

    def __init__(self):
        self._items: List[Tuple[Type[FacturacionError], str]] = []

    def add(self, message: str, kind: Type[FacturacionError] = DomainValidationError) -> None:
        self._items.append((kind, message))

    def __bool__(self) -> bool:
        return bool(self._items)

    def __len__(self) -> int:
        return len(self._items)

    @property
    def messages(self) -> List[str]:
        return [message for _, message in self._items]

    def raise_if_any(self) -> None:
        if not self._items:
            return
        kinds = {kind for kind, _ in self._items}
        exc_class = kinds.pop() if len(kinds) == 1 else DomainValidationError
        raise exc_class(self.messages)
