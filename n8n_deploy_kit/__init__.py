"""
n8n_deploy_kit
--------------

기존 GCP 프로젝트(Cloud SQL, Memorystore Redis, Cloud Storage)를 공유하면서
n8n 을 Cloud Run 에 배포하기 위한 프로비저닝 CLI 패키지.
설정 레지스트리 -> 값 해석 -> Secret 반영 -> 검증 순서로 동작하며,
다른 애플리케이션(docmost 등)의 리소스는 절대 변경하지 않는 것을 목표로 한다.
"""

__all__ = [
    "config",
    "registry",
    "resolver",
    "reconciler",
    "safety",
    "verifier",
    "orchestrator",
]
