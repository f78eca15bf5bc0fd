#Filename: forwarder.py
"""
TCP PORT FORWARDER
Accepts TCP clients, dials a fixed upstream for each one and hands the pair
to BidirectionalRelay on its own thread.

Usage:
    netpiper --listen-port 8443 --target-host 10.0.0.5 --target-port 443 -vv
"""

import argparse
import logging
import socket
import sys
import threading
from dataclasses import dataclass
from typing import Optional, Tuple

from colorama import Fore, Style, init as colorama_init

from buffer_pool import BufferPool
from relay_common import SocketStream
from relay_core import BidirectionalRelay
from relay_lifecycle import Lifecycle
from structures import (
    RelayResult, DEFAULT_BUFFER_SIZE, DEFAULT_IDLE_TIMEOUT, UPSTREAM_CONNECT_TIMEOUT
)

logger = logging.getLogger(__name__)

ACCEPT_POLL_INTERVAL = 0.5
LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(name)s] %(message)s"

BANNER = f"""{Fore.CYAN}
   _  _ ___ _____ ___ ___ ___ ___ ___
  | \\| | __|_   _| _ \\_ _| _ \\ __| _ \\
  | .` | _|  | | |  _/| ||  _/ _||   /
  |_|\\_|___| |_| |_| |___|_| |___|_|_\\
{Fore.YELLOW}     [ bidirectional tcp relay ]{Style.RESET_ALL}
"""


@dataclass(frozen=True)
class ForwardConfig:
    listen_host: str
    listen_port: int
    target_host: str
    target_port: int
    idle_timeout: float = DEFAULT_IDLE_TIMEOUT
    buffer_size: int = DEFAULT_BUFFER_SIZE
    connect_timeout: float = UPSTREAM_CONNECT_TIMEOUT
    backlog: int = 128
    debug_level: int = 0


class TcpForwarder:
    """
    Threaded TCP forwarder.
    Every session runs under a child of the forwarder's lifecycle, so stop()
    tears down live sessions as well as the listener.
    """

    def __init__(self, config: ForwardConfig, relay: Optional[BidirectionalRelay] = None):
        self.config = config
        self.relay = relay or BidirectionalRelay(
            idle_timeout=config.idle_timeout,
            pool=BufferPool(config.buffer_size),
            debug_level=config.debug_level
        )
        self.lifecycle = Lifecycle("forwarder")
        self.server: Optional[socket.socket] = None
        self.sessions = 0
        self.bytes_relayed = 0
        self._lock = threading.Lock()

    def bind(self) -> Tuple[str, int]:
        """Opens the listening socket; returns the bound (host, port)."""
        host, port = self._listen().getsockname()[:2]
        return host, port

    def _listen(self) -> socket.socket:
        server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        server.bind((self.config.listen_host, self.config.listen_port))
        server.listen(self.config.backlog)
        server.settimeout(ACCEPT_POLL_INTERVAL)
        self.server = server
        return server

    def serve_forever(self) -> None:
        server = self.server or self._listen()
        while not self.lifecycle.cancelled:
            try:
                client, addr = server.accept()
            except socket.timeout:
                continue
            except OSError:
                if self.lifecycle.cancelled:
                    break
                raise
            threading.Thread(
                target=self.handle_client, args=(client, addr), daemon=True
            ).start()

    def stop(self) -> None:
        if not self.lifecycle.cancel("forwarder stopped"):
            return
        logger.info("Stopping forwarder...")
        if self.server is not None:
            try:
                self.server.close()
            except OSError as e:
                logger.debug("Listener close failed: %s", e)

    def handle_client(self, client: socket.socket, addr: Tuple[str, int]) -> Optional[RelayResult]:
        """Dials the upstream and relays until the session ends."""
        peer = f"{addr[0]}:{addr[1]}"
        target = (self.config.target_host, self.config.target_port)
        try:
            upstream = socket.create_connection(target, timeout=self.config.connect_timeout)
        except OSError as e:
            logger.error("Upstream connection to %s:%s failed for %s: %s",
                         target[0], target[1], peer, e)
            client.close()
            return None

        for sock in (client, upstream):
            sock.settimeout(None)
            _set_nodelay(sock)

        logger.info("Session %s -> %s:%s opened", peer, target[0], target[1])
        result = self.relay.run(
            self.lifecycle,
            SocketStream(client, peer),
            SocketStream(upstream, f"{target[0]}:{target[1]}")
        )
        with self._lock:
            self.sessions += 1
            self.bytes_relayed += result.written

        if result.ok:
            logger.info("Session %s closed: %d bytes up, %d bytes down in %.2fs",
                        peer, result.written_a_to_b, result.written_b_to_a, result.duration)
        else:
            logger.warning("Session %s ended (%s): %s after %d bytes",
                           peer, result.origin, result.error, result.written)
        return result


def _set_nodelay(sock: socket.socket) -> None:
    try:
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
    except OSError:
        pass


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="netpiper - bidirectional TCP relay")
    parser.add_argument("--listen-host", default="0.0.0.0", help="Bind address (default: 0.0.0.0)")
    parser.add_argument("--listen-port", type=int, required=True, help="Listen port")
    parser.add_argument("--target-host", required=True, help="Upstream host")
    parser.add_argument("--target-port", type=int, required=True, help="Upstream port")
    parser.add_argument("--idle-timeout", type=float, default=DEFAULT_IDLE_TIMEOUT,
                        help="Seconds of silence before a session is torn down (default: 7200)")
    parser.add_argument("--buffer-size", type=int, default=DEFAULT_BUFFER_SIZE,
                        help="Relay buffer size in bytes (default: 32768)")
    parser.add_argument("--connect-timeout", type=float, default=UPSTREAM_CONNECT_TIMEOUT,
                        help="Upstream dial timeout in seconds (default: 10)")
    parser.add_argument("-v", "--verbose", action="count", default=0,
                        help="Relay diagnostics; repeat for more detail")
    return parser


def main(argv: Optional[list] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format=LOG_FORMAT, datefmt="%H:%M:%S"
    )
    colorama_init(autoreset=True)

    config = ForwardConfig(
        listen_host=args.listen_host,
        listen_port=args.listen_port,
        target_host=args.target_host,
        target_port=args.target_port,
        idle_timeout=args.idle_timeout,
        buffer_size=args.buffer_size,
        connect_timeout=args.connect_timeout,
        debug_level=args.verbose
    )
    forwarder = TcpForwarder(config)
    try:
        host, port = forwarder.bind()
    except OSError as e:
        print(f"{Fore.RED}[!] Cannot listen on {config.listen_host}:{config.listen_port}: {e}{Style.RESET_ALL}")
        return 1

    print(BANNER)
    print(f"{Fore.GREEN}[*] Relaying {host}:{port} -> {config.target_host}:{config.target_port}"
          f" (idle timeout {config.idle_timeout:g}s){Style.RESET_ALL}")
    try:
        forwarder.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        forwarder.stop()
        print(f"{Fore.YELLOW}[*] {forwarder.sessions} sessions, "
              f"{forwarder.bytes_relayed} bytes relayed{Style.RESET_ALL}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
