import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from viros.store import DesktopStore


VERSION = "1.1.0"
TERMINAL_TITLE = "Terminal"

HELP_TEXT = "\n".join(
    [
        "Available commands:",
        "- whoami: Show user and IP information",
        "- date: Display current date and time",
        "- echo [text]: Echo back text",
        "- fortune: Get a random fortune message",
        "- neofetch: Display system information",
        "- ls: List desktop items",
        "- cowsay [message]: Display a cow saying message",
        "- uname: Display OS name",
        "- ping [address]: Simulate pinging an address",
        "- clear: Clear terminal",
        "- exit: Close terminal",
        "- help: Show this help menu",
    ]
)

FORTUNES = [
    "You will soon embark on a new coding adventure.",
    "A clever commit message will bring you good luck.",
    "The bug you've been hunting is hiding in plain sight.",
    "Today is a good day to refactor your code.",
    "A PR approval is in your future.",
    "Expect a merge conflict before the day is done.",
    "Your next deployment will go smoothly. No errors.",
    "Help a fellow developer today, karma will return.",
    "The documentation you seek exists, just not where you're looking.",
    "The answer is on Stack Overflow, but not on the first page.",
]


@dataclass
class CommandOutput:
    command: str
    output: str
    is_error: bool = False


def cowsay(message: str) -> str:
    bar = "_" * (len(message) + 2)
    dashes = "-" * (len(message) + 2)
    return "\n".join(
        [
            f"  {bar}",
            f" < {message} >",
            f"  {dashes}",
            "        \\   ^__^",
            "         \\  (oo)\\_______",
            "            (__)\\       )\\/\\",
            "                ||----w |",
            "                ||     ||",
        ]
    )


def ping(address: str) -> str:
    return "\n".join(
        [
            f"PING {address} (127.0.0.1): 56 data bytes",
            "64 bytes from 127.0.0.1: icmp_seq=0 ttl=64 time=0.080 ms",
            "64 bytes from 127.0.0.1: icmp_seq=1 ttl=64 time=0.074 ms",
            "64 bytes from 127.0.0.1: icmp_seq=2 ttl=64 time=0.082 ms",
            "",
            f"--- {address} ping statistics ---",
            "3 packets transmitted, 3 packets received, 0.0% packet loss",
            "round-trip min/avg/max/stddev = 0.074/0.079/0.082/0.003 ms",
        ]
    )


@dataclass
class TerminalSession:
    """The toy shell shown in a Terminal window."""

    store: DesktopStore
    username: str
    ip: Optional[str] = None
    rng: random.Random = field(default_factory=random.Random)
    clock: Callable[[], datetime] = datetime.now
    history: List[CommandOutput] = field(default_factory=list)
    closed: bool = False

    def __post_init__(self) -> None:
        if self.ip is None:
            self.ip = ".".join(str(self.rng.randint(0, 255)) for _ in range(4))

    @property
    def prompt(self) -> str:
        return f"{self.username}@terminal:~$"

    def banner(self) -> List[str]:
        now = self.clock()
        return [
            f"Last login: {now:%Y-%m-%d %H:%M:%S}",
            f"VirOS [Version {VERSION}]",
        ]

    def process(self, line: str) -> Optional[CommandOutput]:
        command = line.strip().lower()
        if not command:
            return None

        if command == "clear":
            self.history = []
            return None
        if command == "exit":
            self.close()
            return None

        output, is_error = self._run(line, command)
        result = CommandOutput(command=line, output=output, is_error=is_error)
        self.history = [*self.history, result]
        return result

    def _run(self, line: str, command: str):
        if command == "whoami":
            return f"User: {self.username}\nIP Address: {self.ip}", False
        if command == "help":
            return HELP_TEXT, False
        if command == "date":
            return self.clock().strftime("%a %b %d %Y %H:%M:%S"), False
        if command == "neofetch":
            return self.neofetch(), False
        if command == "uname":
            return "VirOS", False
        if command == "ls":
            return "  ".join(item.name for item in self.store.items), False
        if command == "fortune":
            return self.rng.choice(FORTUNES), False

        stripped = line.strip()
        if command.startswith("echo "):
            return stripped[5:], False
        if command.startswith("cowsay "):
            return cowsay(stripped[7:]), False
        if command.startswith("ping "):
            return ping(stripped[5:]), False
        return f"Command not found: {stripped}", True

    def neofetch(self) -> str:
        return "\n".join(
            [
                " \\    /",
                "  \\  /      _____",
                f"   \\/      |     |    VirOS {VERSION}",
                f"   /\\      |_____|    User: {self.username}",
                "  /  \\                Terminal: xterm-256color",
                " /    \\               Memory: 1024MB / 4096MB",
                f"                      IP: {self.ip}",
                f"                      Theme: {self.store.theme}",
            ]
        )

    def close(self) -> None:
        self.closed = True
        for window in self.store.windows:
            if window.content is self:
                self.store.close_window(window.id)
                break
