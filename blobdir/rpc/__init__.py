"""
RPC client and server for exposing a Python service class over ZeroMQ and MessagePack.

blobdir uses RPC to turn any directory on a machine into a network blob store that
multiple index writers and readers can share, by executing container calls like
upload(), get_properties() and list_blobs() on the machine that holds the objects.

The requirements for this are modest, but a couple of them rule out common libraries:

* Every call is a round trip on the critical path of opening or closing an index file,
so the overhead per call must be low (ruling out xmlrpc and its HTTP overhead).
* Many threads of one process may share a client, and a server must answer calls from
several clients at once.
* The typed errors of the blob store must survive the trip, because callers make
decisions based on them. A BlobExistsError is how a lock learns that it is held by
somebody else, so wrapping everything in a generic RPC exception is not an option.
* Properties of objects are dataclasses and should come out on the other side as the
same dataclasses without any hand-written conversion code.

The implementation therefore consists of:

* A ROUTER/DEALER proxy on the server that distributes calls over worker threads, and a
REQ socket per calling thread on the client.
* Automatic (de)serialization of dataclasses that appear in the type annotations of the
service class.
* Faithful recreation of builtin exceptions and explicitly registered exception types.
* A shared secret token that is sent with every call.
"""

from abc import ABC
import builtins
from dataclasses import is_dataclass
from enum import auto, Enum
import json
import logging
import threading
import time
import typing
from typing import Any, Callable, Dict, IO, Iterable, List, NoReturn, Optional, Tuple

import msgpack
import zmq

from blobdir.logger import log, summarize


class Encoding:
    """
    Serialization and deserialization of objects using MessagePack or JSON.

    MessagePack is used for calls on the network and compact binary payloads, JSON for
    small documents on disk that should remain readable.
    """

    def __init__(self, *dataclasses: type, exceptions: Iterable[type] = ()):
        """Initialize a (de)serializer for the given dataclass and exception types."""
        self._dataclasses: Dict[str, type] = {}
        self._exceptions: Dict[str, type] = {}

        for dataclass in dataclasses:
            self.register_dataclasses(dataclass)

        for exception in exceptions:
            self.register_exception(exception)

    def register_dataclasses(self, seed_type: type) -> None:
        """
        Register all dataclass types used within the specified type.

        This includes the class itself, its class members, nested dataclasses, and
        container types like List and Optional.
        """
        for dataclass in self._discover_dataclasses(seed_type):
            self._dataclasses[dataclass.__qualname__] = dataclass

    def register_exception(self, exc_type: type) -> None:
        """Register a non-builtin exception type to be reconstructed faithfully."""
        self._exceptions[exc_type.__qualname__] = exc_type

    def pack(self, obj: Any) -> bytes:
        """Serialize an object using MessagePack."""
        return msgpack.packb(obj, default=self.serialize_obj)

    def unpack(self, data: bytes) -> Any:
        """Deserialize an object using MessagePack."""
        return msgpack.unpackb(data, object_hook=self.deserialize_obj)

    def dump_json(self, obj: Any, fp: IO[str]) -> None:
        """Serialize an object to JSON."""
        json.dump(obj, fp, default=self.serialize_obj)

    def load_json(self, fp: IO[str]) -> Any:
        """Deserialize an object from JSON."""
        return json.load(fp, object_hook=self.deserialize_obj)

    def serialize_obj(self, obj: Any) -> Any:
        """Turn a dataclass or exception into a serialization friendly form."""
        if isinstance(obj, BaseException):
            return self._serialize_exception(obj)
        elif obj.__class__.__qualname__ in self._dataclasses:
            return self._serialize_dataclass(obj)
        else:
            raise ValueError(f"unserializable object {obj}")

    def deserialize_obj(self, obj: Any) -> Any:
        """Reconstruct a dataclass or exception from its serialized form."""
        if isinstance(obj, dict) and "__exception__" in obj:
            return self._deserialize_exception(obj)
        elif isinstance(obj, dict) and "__data__" in obj:
            return self._deserialize_dataclass(obj)
        else:
            return obj

    #
    # Exception serialization
    #

    @staticmethod
    def _serialize_exception(exc: BaseException) -> Dict:
        """Turn an exception into a serialization friendly dict."""
        return {"__exception__": {"name": exc.__class__.__qualname__, "args": exc.args}}

    def _deserialize_exception(self, obj: Dict) -> BaseException:
        """
        Reconstruct an exception from its serialized representation.

        Registered exceptions and builtin exceptions (like FileNotFoundError) are
        reconstructed as their original type, anything else becomes a generic
        Exception with the original arguments.
        """
        name = obj["__exception__"]["name"]
        args = obj["__exception__"]["args"]

        if name in self._exceptions:
            return self._exceptions[name](*args)

        builtin_exc = getattr(builtins, name, None)

        if isinstance(builtin_exc, type) and issubclass(builtin_exc, BaseException):
            return builtin_exc(*args)
        else:
            return Exception(*args)

    #
    # Data class serialization
    #

    @staticmethod
    def _serialize_dataclass(obj: Any) -> Dict:
        """Turn a dataclass into a serialization friendly dict."""
        return {"__data__": {"type": obj.__class__.__qualname__, "data": obj.__dict__}}

    def _deserialize_dataclass(self, obj: Dict) -> Any:
        """
        Reconstruct a dataclass from its serialized representation.

        Only previously registered dataclass types can be deserialized.
        """
        type_name = obj["__data__"]["type"]
        type_data = obj["__data__"]["data"]

        if type_name in self._dataclasses:
            try:
                return self._dataclasses[type_name](**type_data)
            except Exception as e:
                raise TypeError(f"failed to deserialize {type_name}: {e}")
        else:
            raise TypeError(f"unknown dataclass '{type_name}'")

    @staticmethod
    def _discover_dataclasses(*seed_types: type) -> List[type]:
        """Find the dataclass types reachable from the specified types."""
        candidates = set(seed_types)
        explored = set()
        dataclasses = set()

        while len(candidates) > 0:
            candidate = candidates.pop()

            if candidate in explored:
                continue

            explored.add(candidate)

            if is_dataclass(candidate):
                dataclasses.add(candidate)

                for subtype in typing.get_type_hints(candidate).values():
                    candidates.add(subtype)
            elif hasattr(candidate, "__args__"):
                # Types nested in constructs like Optional[T] and List[T]
                for subtype in getattr(candidate, "__args__") or ():
                    candidates.add(subtype)

        return list(dataclasses)


class ReturnType(Enum):
    """Type of result for an RPC call."""

    NORMAL = auto()
    EXCEPTION = auto()
    TOKEN_ERROR = auto()


class InvalidTokenError(RuntimeError):
    """Exception raised when an RPC call is made with a wrong authentication token."""


class Base(ABC):
    """Shared logic between RPC client and server implementation."""

    def __init__(self, service_type: type, exceptions: Iterable[type] = ()):
        """Initialize RPC (de)serialization to support the specified service class."""
        function_types = self._discover_function_types(service_type)
        self._encoding = Encoding(*function_types, exceptions=exceptions)

    @staticmethod
    def _discover_function_types(service_type: type) -> List[type]:
        """Discover all types used as parameters or return values in the service."""
        exposed_functions = [
            getattr(service_type, name)
            for name in dir(service_type)
            if not name.startswith("__") and callable(getattr(service_type, name))
        ]

        function_types: List[type] = []

        for func in exposed_functions:
            function_types += typing.get_type_hints(func).values()

        return function_types


class Server(Base):
    """
    RPC server that exposes the methods of a service class instance.

    Example:
    ```
    server = rpc.Server(BlobStoreService(root), token="secret", worker_count=4)
    server.serve("tcp://0.0.0.0:31000")
    ```
    """

    def __init__(
        self,
        service: Any,
        token: Optional[str] = None,
        worker_count: int = 1,
        exceptions: Iterable[type] = (),
    ):
        """
        Instantiate an RPC server for the given service class instance.

        Clients must be initialized with the same token to be allowed to make calls.
        Incoming calls are distributed across the specified number of worker threads.
        """
        super().__init__(service.__class__, exceptions)

        self.context = zmq.Context()

        self.service = service
        self.token = token
        self.worker_count = worker_count

    def serve(self, endpoint: str) -> NoReturn:
        """
        Start listening and handling calls for clients on the specified endpoint.

        The endpoint has the format of zmq_bind, for example "tcp://0.0.0.0:31000".
        """
        socket = self.context.socket(zmq.ROUTER)
        socket.bind(endpoint)

        workers_socket = self.context.socket(zmq.DEALER)
        workers_socket.bind(f"inproc://{id(self)}")

        for _ in range(self.worker_count):
            t = threading.Thread(target=self._run_worker, daemon=True)
            t.start()

        log.info(f"serving {self.service.__class__.__name__} on {endpoint}")

        zmq.proxy(socket, workers_socket)

        assert False, "unreachable"

    def _run_worker(self) -> NoReturn:
        """Request/response loop to handle calls for a single worker thread."""
        socket = self.context.socket(zmq.REP)
        socket.connect(f"inproc://{id(self)}")

        while True:
            token, function, *args = self._encoding.unpack(socket.recv())

            if token != self.token:
                log.warning(f"rejected call to {function} with invalid token")
                socket.send(self._encoding.pack((ReturnType.TOKEN_ERROR.value, None)))
                continue

            try:
                if function is None:
                    ret = None
                else:
                    ret = getattr(self.service, function)(*args)

                socket.send(self._encoding.pack((ReturnType.NORMAL.value, ret)))
            except Exception as e:
                socket.send(self._encoding.pack((ReturnType.EXCEPTION.value, e)))


class Client(Base):
    """
    RPC client to invoke methods on a service instance exposed by an RPC server.

    A single client can be shared by multiple threads and internally creates a socket
    per thread, because REQ sockets must alternate between sending and receiving.

    Example:
    ```
    service = rpc.Client(BlobStoreService, "tcp://localhost:31000", token="secret")
    props = service.get_properties("index", "segments.gen")
    ```
    """

    def __init__(
        self,
        service_type: type,
        endpoint: str,
        token: Optional[str] = None,
        timeout_ms: int = -1,
        exceptions: Iterable[type] = (),
    ) -> None:
        """
        Instantiate an RPC client for the service type at the given endpoint.

        The endpoint has the format of zmq_connect, for example "tcp://localhost:31000".
        """
        super().__init__(service_type, exceptions)

        self.endpoint = endpoint
        self.token = token
        self.timeout_ms = timeout_ms

        self.context = zmq.Context()

        self._socket_pool: Dict[threading.Thread, zmq.Socket] = {}
        self._socket_pool_lock = threading.Lock()

    def _socket(self) -> zmq.Socket:
        """Return the socket to be used by the current thread."""
        t = threading.current_thread()

        with self._socket_pool_lock:
            if t not in self._socket_pool:
                sock = self.context.socket(zmq.REQ)

                sock.setsockopt(zmq.RCVTIMEO, self.timeout_ms)
                sock.setsockopt(zmq.SNDTIMEO, self.timeout_ms)
                sock.setsockopt(zmq.LINGER, 0)

                sock.connect(self.endpoint)

                self._socket_pool[t] = sock

            return self._socket_pool[t]

    def _discard_socket(self) -> None:
        """
        Close the socket of the current thread after a failed call.

        A REQ socket that timed out waiting for a reply is stuck in its receiving state
        and can't be used for another request.
        """
        t = threading.current_thread()

        with self._socket_pool_lock:
            sock = self._socket_pool.pop(t, None)

        if sock is not None:
            sock.close(linger=0)

    def ping(self) -> None:
        """Check if the service is available, raise IOError otherwise."""
        self.__getattr__(None)()

    def close(self) -> None:
        """Close the client sockets and their ZeroMQ context."""
        with self._socket_pool_lock:
            for sock in self._socket_pool.values():
                sock.close(linger=0)

            self._socket_pool.clear()

        self.context.term()

    @property
    def socket_count(self) -> int:
        """Return the number of sockets for this client."""
        with self._socket_pool_lock:
            return len(self._socket_pool)

    @staticmethod
    def _summarize_args(args: tuple) -> Tuple[str, ...]:
        """Summarize a tuple of function arguments."""
        return tuple([summarize(arg, max_length=64) for arg in args])

    def __getattr__(self, name: Optional[str]) -> Callable[..., Any]:
        """Retrieve a wrapper to call the specified remote function."""

        def fn(*args: Any) -> Any:
            """
            Call the remote function with the given arguments.

            Serializes the arguments, makes the call and deserializes the resulting
            return value or raises the resulting exception.
            """
            sock = self._socket()

            t_call = time.time()

            try:
                sock.send(self._encoding.pack((self.token, name, *args)))
                typ, *ret = self._encoding.unpack(sock.recv())
            except zmq.ZMQError:
                self._discard_socket()
                raise IOError(f"rpc call {name} to {self.endpoint} timed out")

            # Explicit check before logging because _summarize_args is relatively slow
            if log.isEnabledFor(logging.DEBUG):
                t_millis = round((time.time() - t_call) * 1000)
                log.debug(f"rpc::{name}{self._summarize_args(args)} - {t_millis} ms")

            if typ == ReturnType.NORMAL.value:
                return ret[0]
            elif typ == ReturnType.EXCEPTION.value:
                raise ret[0]
            elif typ == ReturnType.TOKEN_ERROR.value:
                raise InvalidTokenError("token mismatch between client and server")
            else:
                raise ValueError(f"unexpected return type {typ}")

        return fn
