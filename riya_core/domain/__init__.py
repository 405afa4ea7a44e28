"""领域层模型与协议。

包含：
- models: ChatMessage / ConversationRow / Completion 请求与响应、LLM 统一模型。
- conversation: 会话消息、访客会话与登录用户（资料、每日用量）的存储协议。
- session: 访客会话与消息额度状态机。
- exceptions: 业务异常类型定义。
"""
