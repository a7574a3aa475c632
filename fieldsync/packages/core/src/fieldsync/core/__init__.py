"""FieldSync Core -- 领域模型、合并投影与 SQLite 存储"""
