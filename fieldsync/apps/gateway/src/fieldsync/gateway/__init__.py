"""FieldSync Gateway -- 任务存储 HTTP API 与变更事件总线"""
