"""CLI constants and configuration."""

from prompt_toolkit.styles import Style

COMMANDS = [
    "servers",
    "add-server",
    "remove-server",
    "reorder",
    "upload",
    "list",
    "delete",
    "mirror",
    "check",
    "refresh",
    "whoami",
    "set-owner",
    "clear",
    "exit",
    "help",
]

# Commands whose first argument is a blob hash
HASH_COMMANDS = ("delete", "mirror", "check")

# Commands whose arguments are servers already in the list
SERVER_COMMANDS = ("remove-server", "reorder", "mirror")

STYLE = Style.from_dict(
    {
        "prompt": "#8E44AD bold",
        "command": "#0088ff bold",
    }
)

PURPLE = "\033[38;2;142;68;173m"
RESET = "\033[0m"

LOGO = f"""{PURPLE}
 ┳┳┓┏┓┳┓┳┏┓  ┏┓┓ ┏┓┏┓┏┳┓
 ┃┃┃┣ ┃┃┃┣┫  ┣ ┃ ┣ ┣  ┃
 ┛ ┗┗┛┻┛┻┛┗  ┻ ┗┛┗┛┗┛ ┻
{RESET}"""

WELCOME_TITLE = "MediaFleet CLI - Blob storage across your own servers"
WELCOME_HELP = "Type 'help' for commands or 'exit' to quit.\n"

PROMPT_TEXT = "mediafleet> "

HELP_TEXT = """Available commands:
  servers                                Show the server list (first one is primary)
  add-server <url>                       Append a server at lowest priority
  remove-server <url>                    Remove a server from the list
  reorder <url> [url ...]                Set server priority order
  upload <file> [mime-type]              Upload to the primary, mirror to the rest
  list [search] [--kind K] [--sort S]    List media (kinds: all images videos other;
                                         sorts: newest oldest largest smallest name)
  delete <hash>                          Delete a blob, falling back across servers
  mirror <hash> [url ...]                Copy a blob to servers missing it
  check <hash>                           Probe which servers hold a blob
  refresh                                Re-list blobs from every server
  whoami                                 Show owner, signer and relays
  set-owner <pubkey>                     Set the owner public key (hex)
  clear                                  Clear screen and redisplay welcome message
  help                                   Show this help
  exit                                   Exit REPL

Hashes may be abbreviated to any unique prefix of a listed blob.
Examples:
  set-owner 3bf0c63fcb93463407af97a5e5ee64fa883d107ef9e558472c4eb9aaaefa459d
  add-server https://blossom.example.com
  upload uploads/cat.png
  list cat --kind images --sort largest
  mirror 3f2a9c
  delete 3f2a9c"""

CONFIG_DIR = ".mediafleet"
CONFIG_FILE = "config.json"
