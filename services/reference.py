STATES = [
    {'value': 'california', 'label': 'California'},
    {'value': 'new-york', 'label': 'New York'},
    {'value': 'texas', 'label': 'Texas'},
    {'value': 'florida', 'label': 'Florida'},
]

CITIES = {
    'california': [
        {'value': 'san-francisco', 'label': 'San Francisco'},
        {'value': 'los-angeles', 'label': 'Los Angeles'},
        {'value': 'san-diego', 'label': 'San Diego'},
    ],
    'new-york': [
        {'value': 'new-york-city', 'label': 'New York City'},
        {'value': 'buffalo', 'label': 'Buffalo'},
        {'value': 'rochester', 'label': 'Rochester'},
    ],
    'texas': [
        {'value': 'houston', 'label': 'Houston'},
        {'value': 'dallas', 'label': 'Dallas'},
        {'value': 'austin', 'label': 'Austin'},
    ],
    'florida': [
        {'value': 'miami', 'label': 'Miami'},
        {'value': 'orlando', 'label': 'Orlando'},
        {'value': 'tampa', 'label': 'Tampa'},
    ],
}


def get_states():
    return list(STATES)


def get_cities(state):
    # Unknown states yield no options; submissions are not checked against this list
    return list(CITIES.get(state, []))
