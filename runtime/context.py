"""隔离执行上下文：单线程消息循环 + 请求/通知两类消息 + 定时器"""

import logging
import queue
import threading
from concurrent.futures import Future
from typing import Callable, Dict, Optional, Type

from models.messages import Message, MessageError, Notification, Request, Response

logger = logging.getLogger(__name__)

_SHUTDOWN = object()


class TimerHandle:
    """可取消的定时器句柄"""

    def __init__(self, timer: threading.Timer):
        self._timer = timer

    def cancel(self) -> None:
        self._timer.cancel()


class ThreadTimerScheduler:
    """基于 threading.Timer 的调度器"""

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle:
        timer = threading.Timer(delay_ms / 1000.0, callback)
        timer.daemon = True
        timer.start()
        return TimerHandle(timer)


class Reply:
    """请求的应答通道，只能应答一次，之后的应答被忽略"""

    def __init__(self, future: Future):
        self._future = future

    @property
    def done(self) -> bool:
        return self._future.done()

    def send(self, response: Response) -> bool:
        if self._future.done():
            return False
        self._future.set_result(response)
        return True


class Context:
    """
    一个隔离的执行上下文。

    所有消息进入同一个 FIFO 收件箱，由一个线程依次处理；
    定时器到期时也只是往收件箱投递消息，因此处理器之间不会并发。
    子类在 __init__ 中调用 register() 声明自己接受的消息类型。
    """

    name = "context"

    def __init__(self, scheduler=None):
        self._inbox: "queue.Queue" = queue.Queue()
        self._scheduler = scheduler or ThreadTimerScheduler()
        self._handlers: Dict[Type[Message], Callable] = {}
        self._thread: Optional[threading.Thread] = None

    # ---- 注册与投递 ----

    def register(self, message_cls: Type[Message], handler: Callable) -> None:
        self._handlers[message_cls] = handler

    def post(self, message: Notification) -> None:
        """投递通知，发出即忘"""
        if not isinstance(message, Notification):
            raise MessageError(f"{type(message).__name__} 不是通知消息")
        self._inbox.put((message, None))

    def request(self, message: Request) -> Future:
        """投递请求，返回在应答时完成的 Future"""
        if not isinstance(message, Request):
            raise MessageError(f"{type(message).__name__} 不是请求消息")
        future: Future = Future()
        self._inbox.put((message, Reply(future)))
        return future

    def call_later(self, delay_ms: float, message: Notification) -> TimerHandle:
        """delay_ms 毫秒后向自己的收件箱投递 message"""
        return self._scheduler.call_later(delay_ms, lambda: self.post(message))

    # ---- 处理 ----

    def dispatch(self, message: Message, reply: Optional[Reply] = None) -> None:
        """处理单条消息，处理器异常不会中断消息循环"""
        handler = self._handlers.get(type(message))
        if handler is None:
            logger.warning("%s 丢弃未知消息: %s", self.name, type(message).__name__)
            if reply is not None:
                reply.send(Response.fail(f"Unsupported message: {message.TYPE or type(message).__name__}"))
            return

        try:
            if isinstance(message, Request):
                handler(message, reply or Reply(Future()))
            else:
                handler(message)
        except Exception as e:
            logger.exception("%s 处理 %s 失败", self.name, type(message).__name__)
            if reply is not None:
                reply.send(Response.fail(str(e) or type(e).__name__))

    def drain(self) -> int:
        """同步处理收件箱中现有的全部消息，返回处理条数"""
        count = 0
        while True:
            try:
                item = self._inbox.get_nowait()
            except queue.Empty:
                return count
            if item is _SHUTDOWN:
                continue
            self.dispatch(*item)
            count += 1

    def pending(self) -> int:
        return self._inbox.qsize()

    # ---- 线程生命周期 ----

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()
        logger.debug("%s 消息循环已启动", self.name)

    def close(self, timeout: float = 2.0) -> None:
        """停止消息循环；未处理的消息被丢弃"""
        if self._thread is None:
            return
        self._inbox.put(_SHUTDOWN)
        self._thread.join(timeout)
        self._thread = None
        logger.debug("%s 消息循环已停止", self.name)

    def _run(self) -> None:
        while True:
            item = self._inbox.get()
            if item is _SHUTDOWN:
                return
            self.dispatch(*item)
