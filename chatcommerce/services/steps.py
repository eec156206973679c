from enum import Enum
from typing import Dict, FrozenSet, Mapping


class Step(str, Enum):
    INICIO = "inicio"
    MENU = "menu"
    SELECCION_PRODUCTO = "seleccion_producto"
    PEDIDO_CONVERSACIONAL = "pedido_conversacional"
    CANTIDAD = "cantidad"
    CONFIRMAR_PEDIDO = "confirmar_pedido"
    DATOS_NOMBRE = "datos_nombre"
    DATOS_DIRECCION = "datos_direccion"
    DATOS_TELEFONO = "datos_telefono"
    DATOS_CIUDAD = "datos_ciudad"
    ESPERANDO_VOUCHER = "esperando_voucher"
    MUESTRA_EMPRESA = "muestra_empresa"
    MUESTRA_NOMBRE = "muestra_nombre"
    MUESTRA_DIRECCION = "muestra_direccion"
    MUESTRA_TELEFONO = "muestra_telefono"


INITIAL_STEP = Step.INICIO

TransitionTable = Mapping[Step, FrozenSet[Step]]


class InvalidStepTransition(Exception):
    def __init__(self, from_step: Step, to_step: Step):
        self.from_step = from_step
        self.to_step = to_step
        super().__init__(f"Invalid step transition: {from_step.value} -> {to_step.value}")


def _table(entries: Dict[Step, set]) -> TransitionTable:
    return {step: frozenset(targets) for step, targets in entries.items()}


# Shared by every flow once a product has been chosen.
ORDER_TRANSITIONS = {
    Step.CANTIDAD: {Step.CONFIRMAR_PEDIDO},
    Step.CONFIRMAR_PEDIDO: {
        Step.SELECCION_PRODUCTO,
        Step.DATOS_NOMBRE,
        Step.DATOS_DIRECCION,
        Step.DATOS_TELEFONO,
        Step.DATOS_CIUDAD,
        Step.ESPERANDO_VOUCHER,
    },
    Step.DATOS_NOMBRE: {
        Step.DATOS_DIRECCION,
        Step.DATOS_TELEFONO,
        Step.DATOS_CIUDAD,
        Step.ESPERANDO_VOUCHER,
        Step.CONFIRMAR_PEDIDO,
    },
    Step.DATOS_DIRECCION: {Step.DATOS_TELEFONO, Step.DATOS_CIUDAD, Step.ESPERANDO_VOUCHER, Step.CONFIRMAR_PEDIDO},
    Step.DATOS_TELEFONO: {Step.DATOS_CIUDAD, Step.ESPERANDO_VOUCHER, Step.CONFIRMAR_PEDIDO},
    Step.DATOS_CIUDAD: {Step.ESPERANDO_VOUCHER, Step.CONFIRMAR_PEDIDO},
    Step.ESPERANDO_VOUCHER: set(),
}

SAMPLE_TRANSITIONS = {
    Step.MUESTRA_EMPRESA: {Step.MUESTRA_NOMBRE},
    Step.MUESTRA_NOMBRE: {Step.MUESTRA_DIRECCION},
    Step.MUESTRA_DIRECCION: {Step.MUESTRA_TELEFONO},
    Step.MUESTRA_TELEFONO: set(),
}

MENU_FLOW_TRANSITIONS: TransitionTable = _table(
    {
        Step.INICIO: {Step.MENU},
        Step.MENU: {Step.SELECCION_PRODUCTO, Step.MUESTRA_EMPRESA},
        Step.SELECCION_PRODUCTO: {Step.CANTIDAD},
        **ORDER_TRANSITIONS,
        **SAMPLE_TRANSITIONS,
    }
)

ASSISTED_FLOW_TRANSITIONS: TransitionTable = _table(
    {
        Step.INICIO: {Step.MENU, Step.SELECCION_PRODUCTO, Step.PEDIDO_CONVERSACIONAL, Step.CANTIDAD},
        Step.MENU: {Step.SELECCION_PRODUCTO, Step.PEDIDO_CONVERSACIONAL, Step.CANTIDAD},
        Step.SELECCION_PRODUCTO: {Step.CANTIDAD, Step.PEDIDO_CONVERSACIONAL},
        Step.PEDIDO_CONVERSACIONAL: {Step.SELECCION_PRODUCTO, Step.CANTIDAD, Step.CONFIRMAR_PEDIDO, Step.MENU},
        **ORDER_TRANSITIONS,
    }
)


def can_transition(table: TransitionTable, from_step: Step, to_step: Step) -> bool:
    """Staying put and resetting to the initial step are always allowed."""
    if to_step == from_step or to_step == INITIAL_STEP:
        return True
    return to_step in table.get(from_step, frozenset())


def transition(table: TransitionTable, from_step: Step, to_step: Step) -> Step:
    if not can_transition(table, from_step, to_step):
        raise InvalidStepTransition(from_step, to_step)
    return to_step
