# etshell

A headless terminal multiplexer for POSIX systems, together with helpers
for bootstrapping a remote shell session over ssh.

The multiplexer is made of two commands:

- `htmd` is the daemon. It owns the shells, each one running in its own
  pseudo-terminal, and keeps the layout of tabs, panes and splits. It listens
  on a per-user Unix socket, `htm.<uid>.ipc` in the temporary directory, and
  serves one client at a time; a new client replaces the current one.
- `htm` is the client. When standard input is a terminal it switches it to raw
  mode, starts `htmd` when `pgrep` finds none running for your user, and
  relays keystrokes and output between your terminal and the daemon. When it
  ends (or receives SIGTERM) it writes the escape sequence that leaves
  multiplexer mode and restores your terminal settings.

## Running

Start a session (the daemon is started for you when needed):

    htm

Kill any earlier daemon of yours (with `pkill`) before attaching:

    htm --kill-other-sessions

Show the options:

    htm --help

The daemon can also be run on its own; it logs to `htmd.log` in the
temporary directory (the client logs to `htm.log`):

    htmd

When a client attaches, the daemon sends it the layout as JSON followed by
each pane's scrollback. While attached, the daemon accepts a few debug keys:
escape disconnects the client and leaves the shells running, `x` shuts the
daemon down, and `d` writes the current layout to the log. When the client
closes the last pane, the daemon exits.

## Library

`etshell.codec` holds the base64 codec used on the wire: `encode`, `decode`,
`encoded_length`, `decoded_length` and `strip_padding`. `decode` stops at the
first `=` and raises `ValueError` on characters outside the alphabet.

`etshell.packet.Packet` is a packet with a two-byte header (encrypted flag and
header byte) and a payload: `Packet.from_bytes` parses one, `serialize` writes
it back, `len()` gives its wire size, and `encrypt` / `decrypt` run the payload
through any object with `encrypt` and `decrypt` methods. Encrypting twice or
decrypting a plain packet raises `PacketError`.

`etshell.codes.HtmHeader` lists the message headers spoken between `htm` and
`htmd`; `HtmHeader.from_byte` maps an int, a single byte or a single character
to one.

`etshell.tunnels.parse_ranges_to_requests` turns a tunnel specification such as

    10080:80,10443:443,10090-10092:8000-8002

into a list of `PortForwardRequest` objects, one per port, each holding a
source and a destination `ForwardEndpoint`. When neither side is numeric the
endpoints are kept by name (for example unix socket paths). Mismatched ranges,
or a range on only one side, raise `TunnelError`.

`etshell.terminal_handler.TerminalHandler` runs a command (a login shell by
default) in a pseudo-terminal: `start`, `poll`, `append_data`,
`update_terminal_size` and `stop`. Its output is kept in a `ScrollbackBuffer`
bounded to 1024 lines and 128 KiB.

`etshell.multiplexer.MultiplexerState` keeps the tabs, panes and splits of a
session: `new_tab`, `new_split`, `close_pane`, `resize_pane`, `append_data`,
`num_panes` and `to_json`, plus `update` and `send_terminal_buffers` which
write pane output to a channel. Splitting along the same direction as the
parent split halves the existing sizes and adds the new pane at 0.5; closing a
pane rescales the remaining sizes and collapses a split left with a single
child. Unknown or duplicate ids raise `StateError`. The terminal and id
factories can be replaced, which makes the layout usable without real shells.

`etshell.ipc` provides `FrameChannel`, a connected socket with raw, base64 and
length-field reads and writes, and the `IpcClient` / `IpcServer` endpoints
built on it. `etshell.htm_server.HtmServer` and `etshell.htm_client.HtmClient`
are the daemon and client behind the two commands.

`etshell.ssh_setup.setup_ssh` runs `ssh` (optionally through a jump host) to
start the remote `etterminal` daemon and returns the `id/passkey` pair it
printed; the command runner can be passed in. `etshell.client_args` parses
`[user@]host[:port]` destinations, `id/passkey` pairs, the stdin handshake
line and ssh `ProxyJump` values.

`etshell.console` (`Console`, `PseudoTerminalConsole`, `TerminalInfo`) wraps
the local terminal, `etshell.user_terminal` (`UserTerminal`,
`PseudoUserTerminal`) runs the user's shell on a pseudo-terminal, and
`etshell.telemetry` buffers log records and hands them in JSON batches to a
sender callable you supply.

## What this package does not do

There is no remote-shell client or server command here. The package does not
open or keep alive the network connection of a remote session, does not
encrypt anything itself (`Packet` only calls the crypto object it is given),
and does not carry port-forwarded traffic: tunnel specifications are parsed
into requests, nothing more. `etterminal`, which `setup_ssh` starts on the
remote host, is not part of this package. Telemetry is only delivered through
the sender you pass to it.

## Tests

The test suite uses pytest and is installed with the `test` extra.