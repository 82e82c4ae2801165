"""
클라이언트 IP 추출 유틸리티.

프록시나 로드밸런서를 거치는 경우 실제 클라이언트 IP를 추출합니다.
"""
from typing import Optional

from fastapi import Request

# 확인 순서: 프록시 체인 → nginx → Cloudflare
_FORWARD_HEADERS = ("X-Forwarded-For", "X-Real-IP", "CF-Connecting-IP")


def get_client_ip(request: Request) -> Optional[str]:
    """
    요청에서 실제 클라이언트 IP를 추출합니다.

    X-Forwarded-For 형식은 "client, proxy1, proxy2" 이며 첫 번째 IP가 클라이언트입니다.
    이 헤더들은 위조 가능하므로 로드밸런서에서 외부 값을 제거해야 합니다.
    """
    for header in _FORWARD_HEADERS:
        value = request.headers.get(header)
        if value:
            client_ip = value.split(",")[0].strip()
            if client_ip:
                return client_ip

    # 직접 연결 (프록시 없음)
    if request.client:
        return request.client.host
    return None
