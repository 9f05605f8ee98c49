"""
微信自动化机器人 HTTP API 客户端

每个操作对应一次 HTTP 调用:
    {robot_address}/{path}?key={credential}

响应统一为 {Code, Data, Text} 信封，Code 200 表示成功。
少数接口把 300 也视为正常响应 (CheckCanSetAlias / CheckLoginStatus)。

客户端本身不保存任何会话状态，也不做重试；失败以异常形式抛给调用方:
- RobotTransportError: 超时、连接失败、响应不是 JSON
- RobotAPIError: Code 不在接受范围内，message 为外部返回的 Text
- RobotSendError: 发送接口信封正常，但消息条目级别失败
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
HEALTH_TIMEOUT = 10.0

SUCCESS_CODES = frozenset({200})
ALIAS_CHECK_CODES = frozenset({200, 300})

# 外部接口的消息类型
MSG_TYPE_TEXT = 1
MSG_TYPE_IMAGE = 3


# ============== 异常定义 ==============

class RobotClientError(Exception):
    """机器人接口调用失败的基类"""


class RobotTransportError(RobotClientError):
    """网络层失败: 超时、连接错误、响应无法解析"""


class RobotAPIError(RobotClientError):
    """外部接口返回了不被接受的 Code"""

    def __init__(self, code: int, text: str, response: Optional["RobotResponse"] = None):
        super().__init__(text or f"API调用失败: Code={code}")
        self.code = code
        self.text = text
        self.response = response


class RobotSendError(RobotClientError):
    """消息发送信封正常，但条目级别返回失败"""


# ============== 数据类定义 ==============

@dataclass
class RobotResponse:
    """外部接口统一响应信封"""
    code: int
    data: Any = None
    text: str = ""

    @classmethod
    def from_json(cls, payload: Any) -> "RobotResponse":
        if not isinstance(payload, dict):
            raise RobotTransportError(f"响应格式错误: {str(payload)[:200]}")
        try:
            code = int(payload.get("Code", 0))
        except (TypeError, ValueError):
            raise RobotTransportError(f"响应 Code 无法解析: {payload.get('Code')!r}")
        return cls(
            code=code,
            data=payload.get("Data"),
            text=payload.get("Text") or "",
        )


@dataclass
class RemoteGroup:
    """外部群列表中的一个群"""
    group_id: str
    nick_name: str = ""


@dataclass
class QrCode:
    """登录二维码"""
    qr_code_url: str
    qr_code_base64: str = ""
    uuid: str = ""
    expired_time: int = 0


@dataclass
class LoginCheck:
    """CheckLoginStatus 的结果"""
    code: int
    state: int = 0
    wx_id: str = ""
    nick_name: str = ""
    msg: str = ""

    @property
    def logged_in(self) -> bool:
        return self.code == 200 and self.state == 2


@dataclass
class SendResult:
    """单条消息发送成功后的回执"""
    to_user_name: str
    new_msg_id: int = 0
    create_time: int = 0
    client_msg_id: int = 0
    msg_id: int = 0
    from_user_name: str = ""

    def to_dict(self) -> dict:
        return {
            "to_user_name": self.to_user_name,
            "new_msg_id": self.new_msg_id,
            "create_time": self.create_time,
            "client_msg_id": self.client_msg_id,
            "msg_id": self.msg_id,
            "from_user_name": self.from_user_name,
        }


@dataclass
class TextImageResult:
    """文字 + 图片组合发送结果 (允许部分成功)"""
    success: bool
    message: str
    text_result: Optional[SendResult] = None
    image_result: Optional[SendResult] = None
    failures: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "message": self.message,
            "text_result": self.text_result.to_dict() if self.text_result else None,
            "image_result": self.image_result.to_dict() if self.image_result else None,
        }


def _str_field(value: Any) -> str:
    """外部接口常把字符串包装成 {"str": "..."}"""
    if isinstance(value, dict):
        return value.get("str") or ""
    return value or ""


# ============== 客户端 ==============

class WxRobotClient:
    """
    微信自动化机器人 API 客户端

    Args:
        timeout: 普通接口超时 (秒)
        health_timeout: 健康检查超时 (秒)
        transport: 可选的 httpx 传输层 (测试时注入 MockTransport)
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        health_timeout: float = HEALTH_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None
    ):
        self.timeout = timeout
        self.health_timeout = health_timeout
        self._transport = transport

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._transport)

    async def _request(
        self,
        method: str,
        address: str,
        path: str,
        key: str,
        body: dict | None = None,
        accept_codes: frozenset = SUCCESS_CODES
    ) -> RobotResponse:
        """
        发送请求并解析 {Code, Data, Text} 信封

        Raises:
            RobotTransportError: 网络失败或响应不是 JSON
            RobotAPIError: Code 不在 accept_codes 中
        """
        url = f"{address.rstrip('/')}{path}"
        logger.debug(f"发送请求: {method} {url}")

        try:
            async with self._client(self.timeout) as client:
                response = await client.request(
                    method,
                    url,
                    params={"key": key},
                    json=body,
                    headers={"Accept": "application/json"}
                )
                payload = response.json()
        except httpx.TimeoutException as e:
            logger.error(f"请求超时: {method} {path}, 错误类型: {type(e).__name__}")
            raise RobotTransportError(f"请求超时: {path}") from e
        except httpx.HTTPError as e:
            logger.error(f"请求失败: {method} {path}, {e}")
            raise RobotTransportError(f"请求失败: {path}: {e}") from e
        except ValueError as e:
            logger.error(f"解析响应失败: {method} {path}, {e}")
            raise RobotTransportError(f"响应不是有效的 JSON: {path}") from e

        result = RobotResponse.from_json(payload)
        logger.debug(f"收到响应: {path}, Code={result.code}")

        if result.code not in accept_codes:
            logger.warning(f"{path} 调用失败: Code={result.code}, Text={result.text}")
            raise RobotAPIError(result.code, result.text, result)

        return result

    # ============== 授权与登录 ==============

    async def gen_auth_key(
        self,
        address: str,
        admin_key: str,
        count: int = 1,
        days: int = 365
    ) -> list[str]:
        """生成授权码，返回授权码列表"""
        result = await self._request(
            "POST", address, "/admin/GenAuthKey1", admin_key,
            body={"Count": count, "Days": days}
        )
        keys = [k for k in (result.data or []) if k]
        logger.info(f"生成授权码成功: count={len(keys)}")
        return keys

    async def get_login_qr_code(
        self,
        address: str,
        auth_key: str,
        check: bool = False,
        proxy: str = ""
    ) -> QrCode:
        """获取登录二维码"""
        result = await self._request(
            "POST", address, "/login/GetLoginQrCodeNewX", auth_key,
            body={"Check": check, "Proxy": proxy}
        )
        data = result.data or {}
        return QrCode(
            qr_code_url=data.get("QrCodeUrl") or "",
            qr_code_base64=data.get("qrCodeBase64") or "",
            uuid=data.get("uuid") or "",
            expired_time=data.get("expiredTime") or 0,
        )

    async def check_can_set_alias(self, address: str, token: str) -> RobotResponse:
        """
        检查能否设置微信号

        Code 200 表示会话正常，Code 300 表示需要重新登录，两者都按正常响应返回。
        """
        return await self._request(
            "GET", address, "/login/CheckCanSetAlias", token,
            accept_codes=ALIAS_CHECK_CODES
        )

    async def check_login_status(self, address: str, token: str) -> LoginCheck:
        """检查扫码登录状态 (Code 300 表示状态不存在，例如二维码过期)"""
        result = await self._request(
            "GET", address, "/login/CheckLoginStatus", token,
            accept_codes=ALIAS_CHECK_CODES
        )
        data = result.data if isinstance(result.data, dict) else {}
        check = LoginCheck(
            code=result.code,
            state=data.get("state") or 0,
            wx_id=data.get("wxid") or "",
            nick_name=data.get("nick_name") or "",
            msg=data.get("msg") or result.text,
        )
        logger.info(f"CheckLoginStatus: code={check.code}, state={check.state}, wxid={check.wx_id}")
        return check

    async def get_login_status(self, address: str, token: str) -> dict:
        """获取在线状态详情 (loginState / onlineTime / expiryTime 等原样返回)"""
        result = await self._request("GET", address, "/login/GetLoginStatus", token)
        return result.data or {}

    async def get_init_status(self, address: str, token: str) -> bool:
        """外部初始化是否已完成"""
        result = await self._request("GET", address, "/login/GetInItStatus", token)
        return bool(result.data)

    async def delay_auth_key(
        self,
        address: str,
        admin_key: str,
        auth_key: str,
        days: int
    ) -> str:
        """授权码延期，返回新的到期日期 (YYYY-MM-DD)"""
        result = await self._request(
            "POST", address, "/admin/DelayAuthKey", admin_key,
            body={"Days": days, "ExpiryDate": "", "Key": auth_key}
        )
        data = result.data or {}
        expiry_date = data.get("expiryDate") or ""
        logger.info(f"授权码延期成功: expiryDate={expiry_date}")
        return expiry_date

    # ============== 群组 ==============

    async def get_group_list(self, address: str, token: str) -> list[RemoteGroup]:
        """获取会话可见的全部群"""
        result = await self._request("GET", address, "/group/GroupList", token)
        data = result.data or {}

        groups = []
        for item in data.get("GroupList") or []:
            group_id = _str_field(item.get("userName"))
            if not group_id:
                continue
            groups.append(RemoteGroup(
                group_id=group_id,
                nick_name=_str_field(item.get("nickName")),
            ))

        logger.info(f"获取群列表成功: count={len(groups)}")
        return groups

    async def get_chat_room_info(
        self,
        address: str,
        token: str,
        chat_room_ids: list[str]
    ) -> list[dict]:
        """获取群详情 (contactList 原样返回)"""
        result = await self._request(
            "POST", address, "/group/GetChatRoomInfo", token,
            body={"ChatRoomWxIdList": chat_room_ids}
        )
        data = result.data or {}
        return data.get("contactList") or []

    # ============== 消息发送 ==============

    def _build_msg_item(
        self,
        to_user_name: str,
        msg_type: int,
        text: str = "",
        image_base64: str = ""
    ) -> dict:
        return {
            "MsgItem": [
                {
                    "AtWxIDList": [],
                    "ImageContent": image_base64,
                    "MsgType": msg_type,
                    "TextContent": text,
                    "ToUserName": to_user_name,
                }
            ]
        }

    async def send_text(
        self,
        address: str,
        token: str,
        to_user_name: str,
        text: str
    ) -> SendResult:
        """
        发送文本消息

        Raises:
            RobotSendError: 无返回数据、isSendSuccess 为 false、缺少 resp、
                base_response.ret 非 0 或 chat_send_ret_list 失败
        """
        logger.info(f"发送文本消息: to_user={to_user_name}, text_length={len(text)}")
        result = await self._request(
            "POST", address, "/message/SendTextMessage", token,
            body=self._build_msg_item(to_user_name, MSG_TYPE_TEXT, text=text)
        )

        items = result.data or []
        if not items:
            raise RobotSendError("发送文本消息失败: 无响应数据")

        first = items[0]
        if not first.get("isSendSuccess"):
            raise RobotSendError("发送文本消息失败: 发送状态为失败")

        resp = first.get("resp")
        if not resp:
            raise RobotSendError("发送文本消息失败: 响应数据不完整")

        base = resp.get("base_response") or {}
        if base.get("ret", 0) != 0:
            err_msg = _str_field(base.get("errMsg")) or "未知错误"
            raise RobotSendError(f"发送文本消息失败: {err_msg}")

        ret_list = resp.get("chat_send_ret_list") or []
        if not ret_list:
            raise RobotSendError("发送文本消息失败: 无发送结果数据")

        send_ret = ret_list[0]
        if send_ret.get("ret", 0) != 0:
            raise RobotSendError(f"发送文本消息失败: 发送结果状态码 {send_ret.get('ret')}")

        sent = SendResult(
            to_user_name=_str_field(send_ret.get("toUserName")),
            client_msg_id=send_ret.get("clientMsgId") or 0,
            create_time=send_ret.get("createTime") or 0,
            new_msg_id=send_ret.get("newMsgId") or 0,
        )
        logger.info(f"文本消息发送成功: to_user={sent.to_user_name}, new_msg_id={sent.new_msg_id}")
        return sent

    async def send_image(
        self,
        address: str,
        token: str,
        to_user_name: str,
        image_base64: str
    ) -> SendResult:
        """
        发送图片消息 (base64)

        Raises:
            RobotSendError: 无返回数据、条目 errMsg 非空、缺少 resp 或 baseResponse.ret 非 0
        """
        logger.info(f"发送图片消息: to_user={to_user_name}, image_size={len(image_base64)}")
        result = await self._request(
            "POST", address, "/message/SendImageNewMessage", token,
            body=self._build_msg_item(to_user_name, MSG_TYPE_IMAGE, image_base64=image_base64)
        )

        items = result.data or []
        if not items:
            raise RobotSendError("发送图片消息失败: 无响应数据")

        first = items[0]
        if first.get("errMsg"):
            raise RobotSendError(f"发送图片消息失败: {first['errMsg']}")

        resp = first.get("resp")
        if not resp:
            raise RobotSendError("发送图片消息失败: 响应数据不完整")

        base = resp.get("baseResponse") or {}
        if base.get("ret", 0) != 0:
            err_msg = _str_field(base.get("errMsg")) or "未知错误"
            raise RobotSendError(f"发送图片消息失败: {err_msg}")

        sent = SendResult(
            to_user_name=_str_field(resp.get("toUserName")),
            from_user_name=_str_field(resp.get("fromUserName")),
            msg_id=resp.get("msgId") or 0,
            create_time=resp.get("createTime") or 0,
            new_msg_id=resp.get("newMsgId") or 0,
        )
        logger.info(f"图片消息发送成功: to_user={sent.to_user_name}, new_msg_id={sent.new_msg_id}")
        return sent

    async def send_text_and_image(
        self,
        address: str,
        token: str,
        to_user_name: str,
        text: str = "",
        image_base64: str = ""
    ) -> TextImageResult:
        """
        同时发送文字和图片

        有内容的部分各发送一次，任一部分失败时 success 为 False，
        message 为以 "; " 连接的失败原因。两者都为空时抛出 ValueError。
        """
        if not text and not image_base64:
            raise ValueError("文本内容和图片内容不能都为空")

        outcome = TextImageResult(success=True, message="消息发送成功")

        if text:
            try:
                outcome.text_result = await self.send_text(address, token, to_user_name, text)
            except RobotClientError as e:
                logger.error(f"发送文本消息失败: to_user={to_user_name}, {e}")
                outcome.failures.append(f"文本消息发送失败: {e}")

        if image_base64:
            try:
                outcome.image_result = await self.send_image(address, token, to_user_name, image_base64)
            except RobotClientError as e:
                logger.error(f"发送图片消息失败: to_user={to_user_name}, {e}")
                outcome.failures.append(f"图片消息发送失败: {e}")

        if outcome.failures:
            outcome.success = False
            outcome.message = "; ".join(outcome.failures)
            logger.warning(f"组合消息部分发送失败: to_user={to_user_name}, {outcome.message}")

        return outcome

    # ============== 健康检查 ==============

    async def check_robot_health(self, address: str) -> bool:
        """
        机器人健康检查: GET 机器人地址，HTTP 200 视为健康

        Raises:
            RobotTransportError: 请求无法完成
        """
        if not address.startswith(("http://", "https://")):
            address = "http://" + address

        try:
            async with self._client(self.health_timeout) as client:
                response = await client.get(address)
        except httpx.HTTPError as e:
            logger.error(f"健康检查请求失败: robot_address={address}, {e}")
            raise RobotTransportError(f"请求失败: {e}") from e

        healthy = response.status_code == 200
        logger.info(f"机器人健康检查完成: robot_address={address}, status_code={response.status_code}, healthy={healthy}")
        return healthy


def qr_code_expire_at(ttl_seconds: int = 300) -> int:
    """二维码对调用方展示的过期时间戳 (秒)"""
    return int(time.time()) + ttl_seconds
