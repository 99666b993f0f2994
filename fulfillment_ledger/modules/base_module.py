from PySide6.QtCore import QObject, Signal


class BaseModule(QObject):
    """
    Common surface of the engine's controllers. Operator-facing alerts go out
    through these signals; the shell decides how to show them.
    """

    warning = Signal(str)
    error = Signal(str)
    info = Signal(str)

    TITLE = ""

    def get_title(self) -> str:
        return self.TITLE

    def teardown(self) -> None:
        raise NotImplementedError
