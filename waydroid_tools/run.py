import collections
import logging
import shutil
import subprocess

# Exit status a shell reports for a missing executable.
NOT_FOUND = 127


class CommandResult(collections.namedtuple(
        "CommandResult", ["args", "returncode", "stdout", "stderr"])):

    @property
    def ok(self):
        return self.returncode == 0

    @property
    def output(self):
        return "\n".join(part for part in (self.stdout, self.stderr) if part)


class DetachedProcess(collections.namedtuple(
        "DetachedProcess", ["args", "pid"])):
    """A launched child nobody waits for.

    The process runs in its own session so it survives the manager exiting,
    and nothing reaps it or checks whether it came up.
    """


def command_exists(name):
    return shutil.which(name) is not None


def run(command, cwd=None, env=None, input=None):
    """Run a command to completion and capture its output."""
    logging.debug("Running: %s" % " ".join(command))
    try:
        proc = subprocess.run(
            command, cwd=cwd, env=env, input=input,
            stdout=subprocess.PIPE, stderr=subprocess.PIPE,
            universal_newlines=True)
    except FileNotFoundError:
        return CommandResult(list(command), NOT_FOUND, "",
                             "%s: command not found" % command[0])
    return CommandResult(list(command), proc.returncode,
                         proc.stdout.strip(), proc.stderr.strip())


def stream(command, cwd=None, env=None):
    """Run a command with the terminal attached and return its exit code."""
    logging.debug("Running: %s" % " ".join(command))
    try:
        return subprocess.run(command, cwd=cwd, env=env).returncode
    except FileNotFoundError:
        logging.error("%s: command not found" % command[0])
        return NOT_FOUND


def spawn_detached(command, env=None, user=None, group=None,
                   extra_groups=None):
    logging.debug("Launching detached: %s" % " ".join(command))
    kwargs = {}
    if user is not None:
        kwargs["user"] = user
    if group is not None:
        kwargs["group"] = group
    if extra_groups is not None:
        kwargs["extra_groups"] = extra_groups
    proc = subprocess.Popen(
        command, env=env, start_new_session=True,
        stdin=subprocess.DEVNULL, stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL, **kwargs)
    return DetachedProcess(list(command), proc.pid)
