"""领域层模型与协议。

包含：
- models: ConversationTurn / ProviderCredential / RelayRequest 等中转模型。
- accounts: 用户套餐、用量与 BYOK 凭据的存储模型及 AccountStore 抽象。
- exceptions: 业务异常类型定义。
"""
