"""Gateway 中间件：日志配置、请求日志、任务追踪"""
