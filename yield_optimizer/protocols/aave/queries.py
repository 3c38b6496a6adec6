"""GraphQL queries for the Aave v3 API.

Endpoint: https://api.v3.aave.com/graphql
"""

AAVE_API_URL = "https://api.v3.aave.com/graphql"

RESERVES_QUERY = """
query GetReserves($chainIds: [ChainId!]!) {
    markets(request: { chainIds: $chainIds }) {
        name
        address
        reserves {
            underlyingToken { address symbol decimals }
            supplyInfo {
                apy { value }
                total { value }
            }
            borrowInfo {
                apy { value }
                total { amount { value } }
                utilizationRate { value }
                availableLiquidity { amount { value } }
            }
            isFrozen
            isPaused
        }
    }
}
"""

USER_RESERVES_QUERY = """
query GetUserReserves($chainIds: [ChainId!]!, $user: EvmAddress!) {
    markets(request: { chainIds: $chainIds }) {
        address
        reserves {
            underlyingToken { address decimals }
            userState(user: $user) {
                suppliedAmount { amount { value } }
                borrowedAmount { amount { value } }
            }
        }
    }
}
"""
