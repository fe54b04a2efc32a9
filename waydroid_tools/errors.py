class ManagerError(Exception):
    pass


class PreconditionError(ManagerError):
    pass


class NotRootError(PreconditionError):
    def __init__(self, message="This command needs to be ran as a priviliged user!"):
        super().__init__(message)


class LockHeldError(PreconditionError):
    def __init__(self, path, record):
        self.path = path
        self.record = record
        super().__init__(
            "Another instance is already running (pid %s, lock file: %s)" %
            (record.pid, path))


class UnknownCommandError(ManagerError):
    def __init__(self, command):
        self.command = command
        super().__init__("Unknown command: %s" % command)


class CommandFailedError(ManagerError):
    """An external command exited nonzero.

    ``step`` names what the manager was doing, ``result`` is the
    CommandResult of the failing call (None for streamed commands, whose
    output already went to the terminal).
    """

    def __init__(self, step, result=None, returncode=None):
        self.step = step
        self.result = result
        if returncode is None and result is not None:
            returncode = result.returncode
        self.returncode = returncode
        message = "%s failed" % step
        if returncode is not None:
            message += " (exit code %s)" % returncode
        if result is not None and result.stderr:
            message += ": %s" % result.stderr.splitlines()[-1]
        super().__init__(message)


class HelperSetupError(CommandFailedError):
    pass


class ProvisioningError(ManagerError):
    pass
