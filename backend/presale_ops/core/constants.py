# PDA Seeds (must match smart contract)
PRESALE_SEED = b"presale"
VAULT_SEED = b"vault"
BUYER_SEED = b"buyer"

# Anchor discriminator namespaces
ACCOUNT_NAMESPACE = "account"
INSTRUCTION_NAMESPACE = "global"

# Well-known program ids (host ledger constants, never derived)
SYSTEM_PROGRAM_ID = "11111111111111111111111111111111"
TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
ASSOCIATED_TOKEN_PROGRAM_ID = "ATokenGPvbd9gwEbHyupjwWVJCkzRhYMzEkvnUFC8cfN"

# Rate is stored on-chain as tokens-per-SOL multiplied by RATE_SCALE
RATE_SCALE = 100

LAMPORTS_PER_SOL = 10**9

PUBKEY_LENGTH = 32
U64_MAX = 2**64 - 1
