# Shared context between the agents

# +---------------------+
# |    ContextStore     |   (One record, replaced wholesale on update)
# |---------------------|
# | User text           |
# | Primary agent text  |
# | Companion text      |
# | Emotion, security   |
# +---------------------+
#         |
#         v
# +------------------------------+
# |           Prompt             |   (Assembled per request)
# |------------------------------|
# | Context record               |
# | Last N conversation turns    |
# | Learned user preferences     |
# | Vision / security snapshot   |
# +------------------------------+
#         |
#         v
#   [Generation backend]
