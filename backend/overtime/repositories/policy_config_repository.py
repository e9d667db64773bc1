from typing import Any

from sqlalchemy.orm import Session

from overtime.models.policy_config import PolicyConfig


class PolicyConfigRepository:
    def __init__(self, db: Session):
        self.db = db

    def get_by_key(self, key: str) -> PolicyConfig | None:
        return self.db.query(PolicyConfig).filter(PolicyConfig.key == key).first()

    def get_all(self) -> list[PolicyConfig]:
        return self.db.query(PolicyConfig).order_by(PolicyConfig.key).all()

    def upsert(self, key: str, value: Any) -> PolicyConfig:
        config = self.get_by_key(key)
        if config is None:
            config = PolicyConfig(key=key, value=value)
            self.db.add(config)
        else:
            config.value = value
        self.db.commit()
        self.db.refresh(config)
        return config
