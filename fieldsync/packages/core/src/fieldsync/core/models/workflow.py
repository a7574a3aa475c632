"""前置流程模型 -- 状态流转前必须完成的清单 / 表单 / 弹窗

WorkflowVariant 是按任务分类查表得到的显式变体，
Guard 只消费一次，不在各调用点重复推导。
"""

from datetime import datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, Field


class WorkflowKind(StrEnum):
    """前置流程变体"""

    NONE = "none"
    START_CHECKLIST = "start_checklist"
    COMPLETION_CHECKLIST = "completion_checklist"
    COMPLETION_FORM = "completion_form"
    COMPLETION_POPUP = "completion_popup"


class EvidenceKind(StrEnum):
    """凭证文件类型"""

    CAR_PHOTO = "car_photo"
    LICENSE_PHOTO = "license_photo"
    SIGNATURE = "signature"


class ChecklistField(BaseModel):
    """清单中的一项"""

    id: str = Field(description="字段 ID（提交 payload 的 key）")
    type: Literal["boolean", "string", "textarea"] = Field(default="boolean")
    title: str = Field(description="显示标题")
    description: str | None = Field(default=None, description="补充说明")
    required: bool = Field(default=True, description="是否必填")


class CompletionFormSpec(BaseModel):
    """多步骤完成表单的取证要求"""

    min_car_photos: int = Field(default=1, ge=0, description="车辆照片最少张数")
    require_license_photo: bool = Field(default=True, description="是否需要驾照照片")
    require_signature: bool = Field(default=True, description="是否需要客户签名")


class WorkflowVariant(BaseModel):
    """一个具体的前置流程"""

    kind: WorkflowKind = Field(default=WorkflowKind.NONE)
    fields: list[ChecklistField] = Field(
        default_factory=list,
        description="清单 / 弹窗字段",
    )
    pre_checklist: list[ChecklistField] = Field(
        default_factory=list,
        description="完成表单开头的确认清单",
    )
    form: CompletionFormSpec | None = Field(default=None, description="完成表单要求")
    force_completion: bool = Field(
        default=True,
        description="为 True 时只能通过成功提交（或持久化失败）关闭",
    )
    skippable_with_evidence: bool = Field(
        default=False,
        description="已有照片凭证时允许跳过",
    )

    @property
    def is_direct(self) -> bool:
        return self.kind == WorkflowKind.NONE


class ChecklistSubmission(BaseModel):
    """清单 / 弹窗提交记录"""

    id: str = Field(description="提交记录 ID")
    task_id: str = Field(description="关联任务")
    kind: WorkflowKind = Field(description="提交来源流程")
    values: dict[str, Any] = Field(default_factory=dict, description="字段值")
    driver_id: str | None = Field(default=None, description="提交司机")
    gps_location: dict[str, float] | None = Field(
        default=None,
        description="提交时 GPS 位置 {lat, lng, accuracy}",
    )
    submitted_at: datetime = Field(description="提交时间")


class Evidence(BaseModel):
    """凭证文件元数据（内容写文件系统）"""

    id: str = Field(description="凭证 ID，ULID 格式")
    task_id: str = Field(description="关联任务")
    kind: EvidenceKind = Field(description="凭证类型")
    content_type: str = Field(default="application/octet-stream")
    storage_ref: str = Field(default="", description="存储引用路径")
    size: int = Field(default=0, description="内容大小（字节）")
    hash: str = Field(default="", description="SHA-256 哈希")
    created_at: datetime = Field(description="上传时间")


class Signature(BaseModel):
    """客户签名记录"""

    id: str = Field(description="签名记录 ID")
    task_id: str = Field(description="关联任务")
    driver_id: str | None = Field(default=None, description="采集签名的司机")
    signature_url: str = Field(description="签名图片存储引用")
    signed_by_name: str | None = Field(default=None, description="签名人姓名")
    signed_at: datetime = Field(description="签名时间")


class EvidenceSummary(BaseModel):
    """任务已采集凭证概览 -- 用于判断可否跳过流程"""

    task_id: str
    car_photos: int = 0
    license_photos: int = 0
    signatures: int = 0

    @property
    def has_photos(self) -> bool:
        return self.car_photos > 0
