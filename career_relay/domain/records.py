"""求职记录（JobRecord）模型与存储协议。

一条记录对应一次投递准备：公司、JD、简历，以及各 AI 功能产出的结果。
results 以功能名（如 "optimize-resume"）为键保存最终文本，
调用方在流式输出结束后把完整回答合并进来。
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Protocol


JD_TITLE_LENGTH = 60
RECENT_RECORDS_LIMIT = 30


@dataclass
class JobRecord:
    id: str
    user_id: str
    company: str
    jd_title: str
    jd_content: str
    resume: str
    created_at: datetime
    updated_at: datetime
    results: Dict[str, str] = field(default_factory=dict)


class RecordStore(Protocol):
    def create(self, user_id: str, company: str, jd_content: str, resume: str) -> JobRecord:
        ...

    def get(self, record_id: str, user_id: str) -> Optional[JobRecord]:
        ...

    def list_recent(self, user_id: str, limit: int = RECENT_RECORDS_LIMIT) -> List[JobRecord]:
        ...

    def merge_result(self, record_id: str, user_id: str, action_type: str, content: str) -> Optional[JobRecord]:
        ...

    def delete(self, record_id: str, user_id: str) -> None:
        ...
